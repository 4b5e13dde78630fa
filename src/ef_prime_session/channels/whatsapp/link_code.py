"""
Link with Phone Number

pyaileys links new devices by QR only. WhatsApp's phone-number flow runs
over the same socket as three stanzas:

1. companion_hello (sent by us): the pairing ephemeral key, AES-CTR wrapped
   under a key derived from the 8-character code the user types on the phone
2. primary_hello (notification from the phone): the phone's ephemeral key
   wrapped the same way, plus its identity key
3. companion_finish (sent by us): our identity key sealed with the shared
   secret, and a fresh ADV secret

WhatsApp then sends the regular pair-success IQ, which pyaileys handles.
"""

import asyncio
import base64
import logging
import secrets
from typing import Any, Optional, Sequence

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pyaileys.auth.creds import Contact
from pyaileys.wabinary import S_WHATSAPP_NET, BinaryNode

logger = logging.getLogger(__name__)


PAIRING_CODE_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTVWXYZ"
PAIRING_KEY_ITERATIONS = 2 << 16

COMPANION_REG = "link_code_companion_reg"
COMPANION_PLATFORM_CHROME = "1"
KEY_BUNDLE_INFO = b"link_code_pairing_key_bundle_encryption_key"
ADV_SECRET_INFO = b"adv_secret"


def new_pairing_code() -> str:
    """Eight characters from 40 random bits, five bits per character."""
    value = int.from_bytes(secrets.token_bytes(5), "big")
    return "".join(PAIRING_CODE_ALPHABET[(value >> shift) & 31] for shift in range(35, -1, -5))


def derive_pairing_key(code: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=PAIRING_KEY_ITERATIONS)
    return kdf.derive(code.encode())


def _aes_ctr(key: bytes, iv: bytes, data: bytes) -> bytes:
    # CTR is symmetric: the same call wraps and unwraps
    context = Cipher(algorithms.AES(key), modes.CTR(iv)).encryptor()
    return context.update(data) + context.finalize()


def _hkdf(material: bytes, info: bytes, salt: Optional[bytes] = None) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=32, salt=salt, info=info).derive(material)


def _shared_secret(private_key: bytes, public_key: bytes) -> bytes:
    private = X25519PrivateKey.from_private_bytes(private_key)
    return private.exchange(X25519PublicKey.from_public_bytes(public_key))


def wrap_ephemeral_key(code: str, public_key: bytes) -> bytes:
    """salt(32) + iv(16) + AES-CTR(public_key) under the code-derived key."""
    salt = secrets.token_bytes(32)
    iv = secrets.token_bytes(16)
    return salt + iv + _aes_ctr(derive_pairing_key(code, salt), iv, public_key)


def unwrap_ephemeral_key(code: str, wrapped: bytes) -> bytes:
    if len(wrapped) < 80:
        raise ValueError(f"Wrapped ephemeral key too short ({len(wrapped)} bytes)")
    salt, iv, payload = wrapped[:32], wrapped[32:48], wrapped[48:80]
    return _aes_ctr(derive_pairing_key(code, salt), iv, payload)


def _child(node: Any, tag: str) -> Optional[BinaryNode]:
    content = getattr(node, "content", None)
    if isinstance(content, list):
        for child in content:
            if getattr(child, "tag", None) == tag:
                return child
    return None


def _child_bytes(node: Any, tag: str) -> bytes:
    content = getattr(_child(node, tag), "content", None)
    if isinstance(content, str):
        return content.encode()
    if isinstance(content, (bytes, bytearray, memoryview)):
        return bytes(content)
    raise ValueError(f"Missing {tag} in {COMPANION_REG} stanza")


class LinkCodePairing:
    """
    Companion side of the link-code handshake for one socket.

    request() sends companion_hello and returns the code to show the user.
    handle_notification() is registered on "stanza.notification" and answers
    the phone's primary_hello with companion_finish.
    """

    def __init__(self, socket: Any, creds: Any, browser: Sequence[str]):
        self.socket = socket
        self.creds = creds
        self.browser = browser
        self.finished = False

    @property
    def platform_display(self) -> str:
        os_name, browser_name = self.browser[0], self.browser[1]
        return f"{browser_name} ({os_name})"

    def _iq(self, stage: str, children: list) -> BinaryNode:
        return BinaryNode(
            tag="iq",
            attrs={
                "to": S_WHATSAPP_NET,
                "type": "set",
                "id": f"link-{secrets.token_hex(8)}",
                "xmlns": "md",
            },
            content=[
                BinaryNode(
                    tag=COMPANION_REG,
                    attrs={"jid": self.creds.me.id, "stage": stage, **self._stage_attrs(stage)},
                    content=children,
                )
            ],
        )

    @staticmethod
    def _stage_attrs(stage: str) -> dict:
        if stage == "companion_hello":
            return {"should_show_push_notification": "true"}
        return {}

    async def request(self, phone_digits: str) -> str:
        """Send companion_hello for phone_digits and return the new code."""
        code = new_pairing_code()
        ephemeral_public = self.creds.pairing_ephemeral_key_pair.public
        wrapped = await asyncio.to_thread(wrap_ephemeral_key, code, ephemeral_public)

        self.creds.pairing_code = code
        self.creds.me = Contact(id=f"{phone_digits}{S_WHATSAPP_NET}", name="~")
        await self.socket.events.emit("creds.update", self.creds)

        await self.socket.send_node(self._iq("companion_hello", [
            BinaryNode(tag="link_code_pairing_wrapped_companion_ephemeral_pub", attrs={}, content=wrapped),
            BinaryNode(tag="companion_server_auth_key_pub", attrs={}, content=self.creds.noise_key.public),
            BinaryNode(tag="companion_platform_id", attrs={}, content=COMPANION_PLATFORM_CHROME),
            BinaryNode(tag="companion_platform_display", attrs={}, content=self.platform_display),
            BinaryNode(tag="link_code_pairing_nonce", attrs={}, content="0"),
        ]))
        logger.debug(f"Sent companion_hello for {phone_digits}")
        return code

    async def handle_notification(self, stanza: Any) -> None:
        registration = _child(stanza, COMPANION_REG)
        if registration is None or self.finished:
            return
        stage = registration.attrs.get("stage")
        if stage not in (None, "primary_hello"):
            return
        code = self.creds.pairing_code
        if not code:
            logger.warning(f"Ignoring {COMPANION_REG} notification: no pairing code was requested")
            return

        try:
            ref = _child_bytes(registration, "link_code_pairing_ref")
            primary_identity_public = _child_bytes(registration, "primary_identity_pub")
            wrapped_primary = _child_bytes(registration, "link_code_pairing_wrapped_primary_ephemeral_pub")
            code_public = await asyncio.to_thread(unwrap_ephemeral_key, code, wrapped_primary)
            companion_shared = _shared_secret(self.creds.pairing_ephemeral_key_pair.private, code_public)
            identity_shared = _shared_secret(self.creds.signed_identity_key.private, primary_identity_public)
        except ValueError as e:
            logger.error(f"Malformed primary_hello: {e}")
            return

        companion_random = secrets.token_bytes(32)
        bundle_salt = secrets.token_bytes(32)
        bundle_iv = secrets.token_bytes(12)
        bundle_key = _hkdf(companion_shared, KEY_BUNDLE_INFO, salt=bundle_salt)
        identity_public = self.creds.signed_identity_key.public
        bundle = identity_public + primary_identity_public + companion_random
        sealed = AESGCM(bundle_key).encrypt(bundle_iv, bundle, None)

        adv_secret = _hkdf(companion_shared + identity_shared + companion_random, ADV_SECRET_INFO)
        self.creds.adv_secret_key = base64.b64encode(adv_secret).decode()

        await self.socket.send_node(self._iq("companion_finish", [
            BinaryNode(
                tag="link_code_pairing_wrapped_key_bundle", attrs={}, content=bundle_salt + bundle_iv + sealed
            ),
            BinaryNode(tag="companion_identity_public", attrs={}, content=identity_public),
            BinaryNode(tag="link_code_pairing_ref", attrs={}, content=ref),
        ]))

        self.finished = True
        self.creds.registered = True
        await self.socket.events.emit("creds.update", self.creds)
        logger.info("Phone accepted the pairing code, waiting for pair-success")
