import pytest

from mail_relay.errors import RelayError
from mail_relay.settings import Settings


class RecordingRelay:
    """Relay double that records submissions instead of talking SMTP."""

    def __init__(self, fail: Exception | None = None):
        self.sent = []
        self.fail = fail

    async def send(self, message):
        if self.fail is not None:
            raise self.fail
        self.sent.append(message)


@pytest.fixture
def settings():
    return Settings(
        sender_address="sender@x.com",
        sender_credential="app-password",
        relay_host="smtp.x.com",
        relay_port=587,
        listen_port=8080,
        default_recipients=("c@x.com",),
        default_subject="Subject: Default\n",
    )


@pytest.fixture
def relay():
    return RecordingRelay()


@pytest.fixture
def failing_relay():
    return RecordingRelay(fail=RelayError("535 authentication failed"))
