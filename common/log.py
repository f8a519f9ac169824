import logging


def setup_logger(name: str, level: str = "INFO") -> logging.Logger:
    ''' This function returns a named logger with one stream handler attached '''
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(level.upper())
    handler = logging.StreamHandler()
    formatter = logging.Formatter("[%(levelname)s][%(name)s] %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return logger
