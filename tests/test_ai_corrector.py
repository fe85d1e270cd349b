import json
from types import SimpleNamespace

import pytest

from substitch.ai_corrector import OpenAICorrector
from substitch.exceptions import TransformError
from substitch.transform_pass import TransformContext


class FakeCompletions:
    def __init__(self, reply):
        self.reply = reply
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _corrector(reply, **kwargs):
    completions = FakeCompletions(reply)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAICorrector(client=client, **kwargs), completions


def test_sends_text_with_context_and_parses_reply():
    corrector, completions = _corrector('["Hello, world."]', model="test-model")

    result = corrector.transform("helo world", TransformContext(previous=("before",), following=("after",)))

    assert result == "Hello, world."
    request = completions.requests[0]
    assert request["model"] == "test-model"
    assert request["messages"][0]["role"] == "system"
    assert json.loads(request["messages"][1]["content"]) == {
        "previous": ["before"], "text": "helo world", "following": ["after"],
    }


def test_translate_mode_names_the_language():
    corrector, _ = _corrector('["Hallo"]', mode="translate", target_language="German")

    assert "German" in corrector.system_prompt
    assert corrector.transform("Hello", TransformContext()) == "Hallo"


def test_fenced_json_reply_is_accepted():
    corrector, _ = _corrector('```json\n["fixed"]\n```')

    assert corrector.transform("fixd", TransformContext()) == "fixed"


@pytest.mark.parametrize("reply", ["not json", '["a", "b"]', '{"text": "a"}', ""])
def test_unusable_reply_is_a_transform_error(reply):
    corrector, _ = _corrector(reply)

    with pytest.raises(TransformError):
        corrector.transform("text", TransformContext())


def test_blank_text_is_not_sent():
    corrector, completions = _corrector('["x"]')

    assert corrector.transform("  ", TransformContext()) == "  "
    assert completions.requests == []


def test_invalid_mode_settings():
    with pytest.raises(ValueError):
        _corrector("[]", mode="summarize")
    with pytest.raises(ValueError):
        _corrector("[]", mode="translate")
