from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError

from recofusion.core.errors import UpstreamUnavailableError
from recofusion.domain.services.text_generator import OpenAITextGenerator


class _Completions:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error is not None:
            raise self.error
        usage = SimpleNamespace(prompt_tokens=10, completion_tokens=5, total_tokens=15)
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(model="gpt-test", usage=usage, choices=[SimpleNamespace(message=message)])


def _client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


@pytest.mark.asyncio
async def test_generate_sends_system_and_user_messages():
    completions = _Completions(reply="hello")
    gen = OpenAITextGenerator(_client(completions), model="gpt-test", max_tokens=64)
    assert await gen.generate("hi", system="be brief") == "hello"
    assert completions.kwargs["messages"] == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "hi"},
    ]
    assert completions.kwargs["max_tokens"] == 64


@pytest.mark.asyncio
async def test_generate_empty_content_is_empty_string():
    gen = OpenAITextGenerator(_client(_Completions(reply=None)), model="gpt-test")
    assert await gen.generate("hi") == ""


@pytest.mark.asyncio
async def test_api_errors_become_upstream_unavailable():
    err = APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
    gen = OpenAITextGenerator(_client(_Completions(error=err)), model="gpt-test")
    with pytest.raises(UpstreamUnavailableError):
        await gen.generate("hi")
