import pytest

from retrieval_chat.core import ApplicationCore
from retrieval_chat.prompting import PromptBuilder
from retrieval_chat.retrieval import Document


REFUND_DOCS = [
    Document(text="Refunds within 30 days.", meta={"title": "Refund policy"}, score=0.91),
    Document(text="Store credit after 30 days.", meta={"title": "Refund policy"}, score=0.87),
]


class SettingsStub:
    LLM_BASE_URL = "http://llm.test/v1"
    LLM_API_KEY = "k"
    LLM_MODEL = "test-model"
    LLM_TEMPERATURE = 0.2
    LLM_MAX_TOKENS = 600
    LLM_TIMEOUT = 5.0
    EMBEDDING_MODEL = "test-embedder"
    CHROMA_PATH = "unused"
    CHROMA_HOST = None
    CHROMA_PORT = 8000
    CHROMA_SSL = False
    CHROMA_TOKEN = None
    COLLECTION_NAME = "documents"
    TOP_K = 4


class FakeLLM:
    """Records every call; complete() returns a fixed question, stream() yields fixed chunks."""

    def __init__(self, standalone="What is the refund policy?", chunks=("Woof! ", "Refunds ", "within 30 days."),
                 complete_error=None, stream_error=None, fail_after=0):
        self.standalone = standalone
        self.chunks = list(chunks)
        self.complete_error = complete_error
        self.stream_error = stream_error
        self.fail_after = fail_after
        self.complete_calls = []
        self.stream_calls = []

    async def complete(self, messages, temperature=None, max_tokens=None):
        self.complete_calls.append(messages)
        if self.complete_error is not None:
            raise self.complete_error
        return self.standalone

    async def stream(self, messages, temperature=None, max_tokens=None):
        self.stream_calls.append(messages)
        for i, chunk in enumerate(self.chunks):
            if self.stream_error is not None and i == self.fail_after:
                raise self.stream_error
            yield chunk
        if self.stream_error is not None and self.fail_after >= len(self.chunks):
            raise self.stream_error


class FakeRetrieval:
    def __init__(self, docs=None, error=None):
        self.docs = list(REFUND_DOCS if docs is None else docs)
        self.error = error
        self.queries = []

    def search(self, query, top_k=None):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return list(self.docs)


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_retrieval():
    return FakeRetrieval()


@pytest.fixture
def core(fake_retrieval, fake_llm):
    return ApplicationCore(fake_retrieval, PromptBuilder(), fake_llm)
