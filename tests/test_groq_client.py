from types import SimpleNamespace

import pytest

from services.groq_client import GroqClient, GroqError


def _fake_client(reply=None, error=None, chunks=None):
    def create(**kwargs):
        if error is not None:
            raise error
        if kwargs.get("stream"):
            return iter(
                SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=c))]) for c in chunks
            )
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])

    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def _factory(clients):
    return lambda api_key: clients[api_key]


def test_failing_keys_rotate_to_a_working_one():
    clients = {
        "a": _fake_client(error=RuntimeError("rate limited")),
        "b": _fake_client(error=RuntimeError("rate limited")),
        "c": _fake_client(reply="hello"),
    }
    groq = GroqClient(api_keys=["a", "b", "c"], model="m", client_factory=_factory(clients))

    assert groq.chat([{"role": "user", "content": "hi"}]) == "hello"
    assert groq.current_key_index == 2


def test_all_keys_failing_raises():
    clients = {k: _fake_client(error=RuntimeError("down")) for k in ("a", "b")}
    groq = GroqClient(api_keys=["a", "b"], model="m", client_factory=_factory(clients))

    with pytest.raises(GroqError):
        groq.chat([{"role": "user", "content": "hi"}])


def test_no_keys_configured():
    groq = GroqClient(api_keys=["", ""], model="m")
    with pytest.raises(GroqError):
        groq.chat([])


def test_stream_rotates_before_first_chunk():
    clients = {
        "a": _fake_client(error=RuntimeError("down")),
        "b": _fake_client(chunks=["Hel", None, "lo"]),
    }
    groq = GroqClient(api_keys=["a", "b"], model="m", client_factory=_factory(clients))

    assert "".join(groq.stream([{"role": "user", "content": "hi"}])) == "Hello"
