"""
Image payload helpers for the peer.
Images travel as PNG bytes; received ones are shown in a small Tk window.
"""
import io
import logging
import threading
from typing import Tuple

from PIL import Image

log = logging.getLogger("peer")

VIEWER_SIZE: Tuple[int, int] = (500, 500)


class ImageLoadError(Exception):
    """Raised when a file cannot be read as an image."""
    pass


def load_image(path: str) -> bytes:
    '''
    This function reads an image file and re-encodes it as PNG.
    Input: path to any image format Pillow understands
    Output: PNG bytes ready to be sent
    '''
    try:
        with Image.open(path) as img:
            img.load()
            if img.mode not in ("1", "L", "LA", "P", "RGB", "RGBA", "I"):
                img = img.convert("RGBA")
            buf = io.BytesIO()
            img.save(buf, format="PNG")
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:  # OSError covers missing files
        raise ImageLoadError(f"The specified image could not be loaded: {e}") from e
    return buf.getvalue()


def decode_image(data: bytes) -> Image.Image:
    ''' This function turns received image bytes back into a Pillow image '''
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise ImageLoadError(f"received data is not an image: {e}") from e
    return img


def fit(img: Image.Image, size: Tuple[int, int] = VIEWER_SIZE) -> Image.Image:
    ''' Copy of img scaled down (never up) to fit inside size, aspect ratio kept '''
    out = img.copy()
    out.thumbnail(size, Image.Resampling.LANCZOS)
    return out


class ImageViewer:
    ''' Opens every received image in its own window on its own thread '''

    def show(self, sender: str, data: bytes) -> threading.Thread:
        img = fit(decode_image(data))
        t = threading.Thread(target=self._run, args=(sender, img), daemon=True)
        t.start()
        return t

    def _run(self, sender: str, img: Image.Image):
        try:
            import tkinter as tk
            from PIL import ImageTk
            root = tk.Tk()
            root.title(f"Image Message from {sender}")
            photo = ImageTk.PhotoImage(img, master=root)  # keep a reference while the window lives
            tk.Label(root, image=photo).pack()
            root.resizable(False, False)
            root.mainloop()
        except Exception as e:
            # no display or no Tk: fall back to Pillow's external viewer
            log.warning("cannot open image window (%s), using system viewer", e)
            img.show(title=f"Image Message from {sender}")
