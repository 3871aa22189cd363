import uuid
from dataclasses import dataclass
from typing import Protocol


class MessagingProviderError(RuntimeError):
    pass


@dataclass(frozen=True)
class SessionStartResult:
    external_session_id: str
    qr_code: str
    status: str = "connecting"


@dataclass(frozen=True)
class MessageSendRequest:
    platform_id: str
    session_id: str | None
    recipient: str
    content: str


@dataclass(frozen=True)
class MessageSendResult:
    provider: str
    message_id: str
    status: str


class MessagingProvider(Protocol):
    name: str

    def start_session(self, platform_id: str, phone_number: str) -> SessionStartResult:
        ...

    def send_message(self, request: MessageSendRequest) -> MessageSendResult:
        ...

    def end_session(self, external_session_id: str) -> None:
        ...


class StubWhatsAppProvider:
    """Accepts every message; pairing is confirmed through the session callback."""

    name = "whatsapp_stub"

    def start_session(self, platform_id: str, phone_number: str) -> SessionStartResult:
        session_id = f"wa-{uuid.uuid4().hex[:16]}"
        return SessionStartResult(
            external_session_id=session_id,
            qr_code=f"2@{uuid.uuid4().hex},{platform_id},{session_id}",
        )

    def send_message(self, request: MessageSendRequest) -> MessageSendResult:
        if not request.session_id:
            raise MessagingProviderError("No active provider session")
        return MessageSendResult(
            provider=self.name,
            message_id=f"msg-{uuid.uuid4().hex[:14]}",
            status="sent",
        )

    def end_session(self, external_session_id: str) -> None:
        return None


_MESSAGING_PROVIDERS: dict[str, MessagingProvider] = {
    "whatsapp_stub": StubWhatsAppProvider(),
}


def get_messaging_provider(name: str) -> MessagingProvider:
    normalized = (name or "").strip().lower()
    provider = _MESSAGING_PROVIDERS.get(normalized)
    if not provider:
        available = ", ".join(sorted(_MESSAGING_PROVIDERS))
        raise ValueError(f"Unknown messaging provider '{name}'. Available: {available}")
    return provider
