import json

import httpx
import pytest

from fork_ai.types import Settings
from fork_sdk import create_orchestrator, create_store, load_settings, validate_model
from fork_sdk.sdk import data_dir
from fork_session import IMPORT_KEY, ROOT_ID, TREE_KEY, MemoryStorage

from tests.helpers import make_stream_fn, user_msg


def _tags_transport(payload=None, status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/tags"
        return httpx.Response(status, json=payload)

    return httpx.MockTransport(handler)


def test_load_settings_from_environment():
    settings = load_settings(
        {
            "FORK_CHAT_MODEL": "mistral",
            "FORK_CHAT_TEMPERATURE": "0.3",
            "FORK_CHAT_HISTORY_LENGTH": "4",
            "FORK_CHAT_MAX_OUTPUT_TOKENS": "0",
            "FORK_CHAT_BASE_URL": "",
        }
    )
    assert settings.model == "mistral"
    assert settings.temperature == 0.3
    assert settings.history_length == 4
    assert settings.num_predict() == -1
    assert settings.base_url == "http://localhost:11434"


def test_load_settings_defaults_and_bad_values():
    assert load_settings({}) == Settings()
    with pytest.raises(ValueError, match="FORK_CHAT_TEMPERATURE"):
        load_settings({"FORK_CHAT_TEMPERATURE": "warm"})


def test_data_dir_override(tmp_path):
    assert data_dir({"FORK_CHAT_DATA_DIR": str(tmp_path)}) == tmp_path
    assert data_dir({}).name == ".fork-chat"


@pytest.mark.asyncio
async def test_validate_model_switches_to_first_available():
    transport = _tags_transport({"models": [{"name": "zeta"}, {"name": "alpha"}]})
    settings = await validate_model(Settings(model="llama3"), transport=transport)
    assert settings.model == "alpha"


@pytest.mark.asyncio
async def test_validate_model_keeps_available_model():
    original = Settings(model="zeta")
    transport = _tags_transport({"models": [{"name": "zeta"}, {"name": "alpha"}]})
    assert await validate_model(original, transport=transport) is original


@pytest.mark.asyncio
async def test_validate_model_keeps_settings_when_list_unusable():
    original = Settings(model="llama3")
    assert await validate_model(original, transport=_tags_transport({"models": []})) is original
    assert await validate_model(original, transport=_tags_transport({"error": "boom"}, status=500)) is original

    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert await validate_model(original, transport=httpx.MockTransport(refuse)) is original


def test_create_orchestrator_consumes_import_handoff():
    handoff = {
        "root": {"id": "root", "messages": [{"role": "assistant", "content": "w"}], "parentId": None, "childrenIds": ["a"]},
        "a": {"id": "a", "message": {"role": "user", "content": "imported"}, "parentId": "root", "childrenIds": []},
    }
    storage = MemoryStorage({IMPORT_KEY: json.dumps(handoff)})
    orchestrator = create_orchestrator(settings=Settings(), storage=storage, stream_fn=make_stream_fn([]))

    assert orchestrator.store.active_node_id == "a"
    assert [m.content for m in orchestrator.store.reconstruct_history()] == ["imported"]
    assert storage.read(IMPORT_KEY) is None
    assert orchestrator.settings == Settings()


def test_create_store_uses_data_path(tmp_path):
    store = create_store(data_path=str(tmp_path))
    node_id = store.add_branch(user_msg("saved"), ROOT_ID)
    saved = json.loads((tmp_path / f"{TREE_KEY}.json").read_text(encoding="utf-8"))
    assert node_id in saved


def test_create_store_survives_malformed_handoff():
    storage = MemoryStorage({IMPORT_KEY: '{"root": {"messages": true}}'})
    store = create_store(storage=storage)
    assert list(store.tree) == [ROOT_ID]
    assert storage.read(IMPORT_KEY) is None
