import threading
from typing import Callable

FRAME = "*" * 69


class Console:
    '''
    Terminal shared by the menu thread and the receive thread.

    Only one of them may own stdin at a time. The menu takes a turn per
    question; an image confirmation arriving from the relay waits for the
    current question to be answered and then goes before the menu's next one.
    '''
    def __init__(self, input_fn: Callable[[], str] = input, output_fn: Callable[[str], None] = print):
        self._input = input_fn
        self._output = output_fn
        self._cond = threading.Condition()
        self._busy = False
        self._confirms_waiting = 0

    def _take_turn(self, confirming: bool):
        with self._cond:
            if confirming:
                self._confirms_waiting += 1
            try:
                while self._busy or (not confirming and self._confirms_waiting):
                    self._cond.wait()
            finally:
                if confirming:
                    self._confirms_waiting -= 1
            self._busy = True

    def _end_turn(self):
        with self._cond:
            self._busy = False
            self._cond.notify_all()

    @property
    def busy(self) -> bool:
        with self._cond:
            return self._busy

    def show(self, text: str):
        self._output(text)

    def notice(self, text: str):
        self._output(f"{FRAME}\nSystem Notice - {text}\n{FRAME}")

    def ask(self, prompt: str) -> str:
        ''' Print prompt and read one line; raises EOFError when input is closed '''
        self._take_turn(confirming=False)
        try:
            self._output(prompt)
            return self._input().strip()
        finally:
            self._end_turn()

    def confirm(self, prompt: str) -> bool:
        ''' Ask a Yes/No question, repeating until one of them is entered '''
        if self.busy:
            self.notice("Waiting for Previous Input to Finish")
        self._take_turn(confirming=True)
        try:
            while True:
                self._output(prompt)
                try:
                    choice = self._input().strip()
                except EOFError:
                    return False
                if choice == "Yes":
                    return True
                if choice == "No":
                    return False
                prompt = "Invalid Option, Please enter Yes or No"
        finally:
            self._end_turn()
