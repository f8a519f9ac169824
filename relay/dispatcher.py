"""
Cross-session routing for the relay.

The dispatcher owns no state: targets come from the session registry and
held image offers live in each recipient's pending-delivery queue. Nothing
here reads from a socket, so routing and the image handshake can be
exercised with in-memory sessions.
"""
import logging
from enum import Enum
from typing import Dict

from common.messages import (Envelope, MessageKind, RELAY_NAME,
                             image_confirmation_prompt)
from relay.registry import SessionRegistry
from relay.session import Session

log = logging.getLogger("relay.dispatcher")


class DeliveryStatus(Enum):
    DELIVERED = "delivered"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    RECIPIENT_OFFLINE = "recipient_offline"
    DISCARDED = "discarded"
    NOTHING_PENDING = "nothing_pending"


class Dispatcher:
    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    def _write(self, target: Session, env: Envelope) -> bool:
        ''' Send to another session; a dead target never fails the caller '''
        try:
            target.send(env)
            return True
        except OSError as e:
            log.info("could not write %s to %s: %s", env.kind.value, target.username, e)
            return False

    def roster(self, requester: str) -> Envelope:
        ''' Build the online-clients response for the requester (requester excluded) '''
        return Envelope(MessageKind.ONLINE_CLIENTS_RESPONSE, RELAY_NAME, requester,
                        self.registry.snapshot_others(requester))

    def forward_text(self, env: Envelope) -> DeliveryStatus:
        target = self.registry.lookup(env.recipient)
        if target is None:
            log.debug("dropping text from %s: %s is offline", env.sender, env.recipient)
            return DeliveryStatus.RECIPIENT_OFFLINE
        receipt = Envelope(MessageKind.TEXT_TRANSFER_RECEIPT, env.sender, env.recipient, env.payload)
        if not self._write(target, receipt):
            return DeliveryStatus.RECIPIENT_OFFLINE
        return DeliveryStatus.DELIVERED

    def broadcast_text(self, env: Envelope) -> Dict[str, DeliveryStatus]:
        results = {}
        for target in self.registry.sessions_except(env.sender):
            receipt = Envelope(MessageKind.TEXT_SEND_TO_ALL_RECEIPT, env.sender,
                               target.username, env.payload)
            ok = self._write(target, receipt)
            results[target.username] = DeliveryStatus.DELIVERED if ok else DeliveryStatus.RECIPIENT_OFFLINE
        return results

    def _offer(self, sender: str, target: Session, data: bytes) -> DeliveryStatus:
        # hold the image first so an immediate answer always finds it
        held = Envelope(MessageKind.IMAGE_TRANSFER_RECEIPT, sender, target.username, data)
        target.pending.add(sender, target.username, held)
        prompt = Envelope(MessageKind.IMAGE_TRANSFER_CONFIRMATION_REQUEST, sender,
                          target.username, image_confirmation_prompt(sender))
        if not self._write(target, prompt):
            target.pending.remove(sender, target.username, held)
            return DeliveryStatus.RECIPIENT_OFFLINE
        log.debug("image from %s held for %s", sender, target.username)
        return DeliveryStatus.AWAITING_CONFIRMATION

    def offer_image(self, env: Envelope) -> DeliveryStatus:
        target = self.registry.lookup(env.recipient)
        if target is None:
            log.debug("dropping image from %s: %s is offline", env.sender, env.recipient)
            return DeliveryStatus.RECIPIENT_OFFLINE
        return self._offer(env.sender, target, env.payload)

    def broadcast_image(self, env: Envelope) -> Dict[str, DeliveryStatus]:
        return {target.username: self._offer(env.sender, target, env.payload)
                for target in self.registry.sessions_except(env.sender)}

    def resolve_confirmation(self, responder: Session, env: Envelope) -> DeliveryStatus:
        '''
        Settle the responder's answer to an image offer.
        Input:
            - responder: session that received the confirmation request
            - env: confirmation response; recipient names the original sender
        Output: DELIVERED, DISCARDED or NOTHING_PENDING
        '''
        original_sender = env.recipient
        held = responder.pending.take(original_sender, responder.username)
        if held is None:
            log.warning("%s answered an image offer from %s that is not pending",
                        responder.username, original_sender)
            return DeliveryStatus.NOTHING_PENDING
        if not env.payload:
            log.debug("%s declined image from %s", responder.username, original_sender)
            return DeliveryStatus.DISCARDED
        # the responder's own stream; errors here belong to the responder's session
        responder.send(held)
        return DeliveryStatus.DELIVERED
