import io
import asyncio
import contextlib
import os
import tempfile
from types import SimpleNamespace

import pytest
from PIL import Image

# Point the app at throwaway storage before anything imports it
_TMP = tempfile.mkdtemp(prefix="aidentify-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP}/test.db"
os.environ["MEDIA_ROOT"] = os.path.join(_TMP, "media")
os.environ.pop("SUPABASE_URL", None)
os.environ.pop("SUPABASE_KEY", None)

from packages.catalog.schemas import PartColor, PartModel, PartRecord  # noqa: E402
from packages.catalog.service import CatalogService  # noqa: E402
from packages.settings import Settings  # noqa: E402
from packages.storage import db  # noqa: E402
from packages.storage.images import LocalImageStore  # noqa: E402


def make_jpeg(color=(200, 30, 30), size=(64, 48)) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", size, color).save(out, format="JPEG")
    return out.getvalue()


def make_png(color=(10, 200, 10), size=(40, 40)) -> bytes:
    out = io.BytesIO()
    Image.new("RGBA", size, color + (255,)).save(out, format="PNG")
    return out.getvalue()


def make_part(part_id="p1", image_urls=None, timestamp=1000, **kwargs) -> PartRecord:
    values = dict(
        part_number=f"PN-{part_id}",
        part_name=f"Bracket {part_id}",
        color=PartColor.KU_GREY,
        workstation="WS-10",
        models=[PartModel.B03],
    )
    values.update(kwargs)
    return PartRecord(id=part_id, image_urls=list(image_urls or []), timestamp=timestamp, **values)


class FakeModels:
    def __init__(self, text=None, exc=None):
        self.text = text
        self.exc = exc
        self.calls = []

    async def generate_content(self, model, contents, config):
        self.calls.append(SimpleNamespace(model=model, contents=contents, config=config))
        if self.exc is not None:
            raise self.exc
        return SimpleNamespace(text=self.text)


class FakeChat:
    def __init__(self, owner, history):
        self.owner = owner
        self.history = history

    async def send_message(self, message):
        self.owner.sent.append((message, self.history))
        if self.owner.exc is not None:
            raise self.owner.exc
        return SimpleNamespace(text=self.owner.reply)


class FakeChats:
    def __init__(self, reply="ok", exc=None):
        self.reply = reply
        self.exc = exc
        self.sent = []
        self.configs = []

    def create(self, model, config=None, history=None):
        self.configs.append(config)
        return FakeChat(self, history or [])


class FakeClient:
    def __init__(self, models=None, chats=None, live=None):
        self.aio = SimpleNamespace(
            models=models or FakeModels(),
            chats=chats or FakeChats(),
            live=live,
        )


@pytest.fixture
def tmp_settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path}/parts.db",
        api_key="test-key",
        media_root=str(tmp_path / "media"),
        media_base_url="http://testserver/media",
    )


@pytest.fixture
def database(tmp_settings):
    db.configure(tmp_settings.database_url)
    yield
    db.configure(os.environ["DATABASE_URL"])


@pytest.fixture
def image_store(tmp_settings):
    store = LocalImageStore(tmp_settings.media_root, tmp_settings.media_base_url)
    store.initialize()
    return store


@pytest.fixture
def service(database, image_store):
    return CatalogService(image_store=image_store)


def live_message(audio=None, turn_complete=False, interrupted=False):
    parts = [SimpleNamespace(inline_data=SimpleNamespace(data=audio))] if audio else []
    return SimpleNamespace(server_content=SimpleNamespace(
        model_turn=SimpleNamespace(parts=parts) if parts else None,
        turn_complete=turn_complete,
        interrupted=interrupted,
    ))


class FakeSession:
    def __init__(self, turns):
        self.turns = list(turns)
        self.sent = []
        self.got_audio = asyncio.Event()

    async def send_realtime_input(self, audio):
        self.sent.append(audio)
        self.got_audio.set()

    async def receive(self):
        if not self.turns:
            return
        turn = self.turns.pop(0)
        await self.got_audio.wait()
        for message in turn:
            yield message


class FakeLive:
    def __init__(self, session=None, exc=None):
        self.session = session
        self.exc = exc
        self.connects = []
        self.closed = False

    @contextlib.asynccontextmanager
    async def _connect(self):
        if self.exc is not None:
            raise self.exc
        try:
            yield self.session
        finally:
            self.closed = True

    def connect(self, model, config):
        self.connects.append((model, config))
        return self._connect()
