import copy
import io

import pytest
from PIL import Image
from pymongo.errors import DuplicateKeyError


def make_page_image(w=1240, h=1754, color=(255, 255, 255), fmt="JPEG"):
    img = Image.new("RGB", (w, h), color)
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


async def no_sleep(_seconds):
    return None


def _matches(doc, query):
    return all(doc.get(k) == v for k, v in query.items())


class _Cursor:
    def __init__(self, docs):
        self._docs = docs

    async def to_list(self, length=None):
        return self._docs if length is None else self._docs[:length]


class FakeCollection:
    """Just enough of a Motor collection for the stores."""

    def __init__(self, name):
        self.name = name
        self.docs = []
        self.indexes = []
        self.update_calls = 0
        self.conflicts_to_raise = 0

    async def create_index(self, keys, unique=False):
        self.indexes.append((keys, unique))
        return str(keys)

    async def insert_one(self, doc):
        self.docs.append(copy.deepcopy(doc))

    async def find_one(self, query, projection=None):
        for doc in self.docs:
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def find(self, query=None, projection=None):
        return _Cursor([copy.deepcopy(d) for d in self.docs if _matches(d, query or {})])

    async def count_documents(self, query):
        return sum(1 for d in self.docs if _matches(d, query))

    async def update_one(self, query, update, upsert=False):
        self.update_calls += 1
        if self.conflicts_to_raise:
            self.conflicts_to_raise -= 1
            raise DuplicateKeyError("E11000 duplicate key error")
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                return
        if upsert:
            doc = dict(query)
            doc.update(copy.deepcopy(update.get("$setOnInsert", {})))
            doc.update(copy.deepcopy(update.get("$set", {})))
            self.docs.append(doc)


class FakeDb:
    def __init__(self):
        self._collections = {}

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]


class FakeChat:
    """Scripted stand-in for LlmChat: returns the next reply, raises it if it is an exception."""

    def __init__(self, replies, calls):
        self._replies = replies
        self._calls = calls

    async def send_message(self, message):
        self._calls.append(message)
        reply = self._replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if callable(reply):
            return await reply()
        return reply


class FakeChatFactory:
    def __init__(self, **replies_by_model):
        self.replies = {model: list(r) for model, r in replies_by_model.items()}
        self.calls = {model: [] for model in replies_by_model}

    def __call__(self, model_name, system_message):
        return FakeChat(self.replies[model_name], self.calls[model_name])


@pytest.fixture
def fake_db():
    return FakeDb()


@pytest.fixture
def page_image():
    return make_page_image()
