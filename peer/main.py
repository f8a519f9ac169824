"""
Main entry point for the chat peer.
Connect to the relay, log in, then serve the text menu until Exit.
"""
import argparse
import threading

import emoji

from common.log import setup_logger
from peer.console import Console
from peer.images import ImageLoadError, ImageViewer, load_image
from peer.net import PeerConnection

PORT = 1337
EXIT = "Exit"
RULE = "-" * 45

MENU = ("Please Enter a number or Exit corresponding to One of the Following Options\n"
        "1. Send Text Message to Another Client\n"
        "2. Send Image Message to Another Client\n"
        "3. Send Text Message to All Online Clients\n"
        "4. Send Image Message to All Online Clients\n"
        "Exit. Logout")

log = setup_logger("peer", "WARNING")


class PeerApp:
    ''' Menu loop for one logged-in user '''

    def __init__(self, net: PeerConnection, console: Console, viewer: ImageViewer = None):
        self.net = net
        self.console = console
        self.viewer = viewer or ImageViewer()
        self.done = threading.Event()
        net.on_text = self.show_text
        net.on_confirmation = self.confirm
        net.on_image = self.show_image
        net.on_closed = self.closed

    # callbacks from the receive thread
    def show_text(self, sender: str, text: str, to_everyone: bool):
        audience = "To Everyone" if to_everyone else "To You"
        self.console.show(f"{RULE}\nText Message from {sender} ({audience}): {text}\n{RULE}")

    def confirm(self, sender: str, prompt: str) -> bool:
        return self.console.confirm(prompt)

    def show_image(self, sender: str, data: bytes):
        self.console.notice(f"{sender} sent you an Image. Opening it in a new window.")
        try:
            self.viewer.show(sender, data)
        except ImageLoadError as e:
            log.warning("image from %s could not be shown: %s", sender, e)

    def closed(self, reason: str):
        self.console.notice(f"Connection to the relay closed: {reason}")
        self.done.set()

    # menu actions
    def _pick_recipient(self, what: str):
        roster = self.net.request_roster()
        listing = "".join(name + "\n" for name in roster)
        name = self.console.ask(f"Currently Online Clients({len(roster)}) :\n{RULE}\n{listing}{RULE}\n"
                                f"Please Enter a Client's name to Send the {what} to.")
        if not self.net.is_online(name):
            self.console.notice("The Client whose name has been entered is not online. Going Back to Main Menu.")
            return None
        return name

    def _read_image(self, prompt: str) -> bytes:
        while True:
            path = self.console.ask(prompt)
            try:
                return load_image(path)
            except ImageLoadError as e:
                self.console.show(str(e))
                prompt = "Please re-enter the Location of the Image File to Send"

    def _read_text(self, prompt: str) -> str:
        return emoji.emojize(self.console.ask(prompt), language="alias")

    def send_text(self):
        to = self._pick_recipient("Message")
        if to:
            self.net.send_text(to, self._read_text("Please enter the Text Message to Send"))

    def send_image(self):
        to = self._pick_recipient("Image")
        if to:
            self.net.send_image(to, self._read_image("Please enter the Location of the Image File to Send"))

    def broadcast_text(self):
        self.net.request_roster()
        self.net.broadcast_text(self._read_text("Please enter the Text Message to Send to Everyone"))

    def broadcast_image(self):
        self.net.request_roster()
        self.net.broadcast_image(self._read_image("Please enter the Location of the Image File to Send to Everyone"))

    def run(self):
        actions = {"1": self.send_text, "2": self.send_image,
                   "3": self.broadcast_text, "4": self.broadcast_image}
        while not self.done.is_set():
            try:
                choice = self.console.ask(MENU)
            except EOFError:
                choice = EXIT
            if self.done.is_set():
                break
            if choice == EXIT:
                break
            action = actions.get(choice)
            if action is None:
                self.console.show("Sorry the input was not understood. Please enter your choice again. (1,2,3,4,Exit)")
                continue
            try:
                action()
            except EOFError:
                break
            except OSError as e:
                self.console.notice(f"Lost the connection to the relay: {e}")
                break
        self.net.close()


def login(net: PeerConnection, console: Console) -> bool:
    ''' Ask for credentials until the relay accepts them '''
    while True:
        username = console.ask("Please enter a Username:")
        password = console.ask("Please enter a Password:")
        if net.login(username, password):
            return True
        console.notice("Login Failed: The Client Details entered were incorrect.")


def main(argv=None):
    ap = argparse.ArgumentParser(description="Text and image chat peer")
    ap.add_argument("--host", help="Relay host address (asked for when omitted)")
    ap.add_argument("--port", type=int, default=PORT, help="Relay port")
    ap.add_argument("--log-level", default="WARNING")
    args = ap.parse_args(argv)
    log.setLevel(args.log_level.upper())

    console = Console()
    try:
        host = args.host or console.ask("Please enter the IP/DNS address of the Server")
        net = PeerConnection(host, args.port)
        net.connect()
        console.notice("Client has Successfully connected to the Server")
        login(net, console)
    except EOFError:
        return
    except OSError as e:
        console.notice(f"Could not reach the relay: {e}")
        return

    app = PeerApp(net, console)
    net.start()
    console.notice(f"{net.username}, you have logged in successfully.")
    app.run()


if __name__ == "__main__":
    main()
