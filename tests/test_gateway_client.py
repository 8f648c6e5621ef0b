import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import httpx
import openai
import pytest

from persona_quiz.core.config import GatewayConfig
from persona_quiz.core.models import ChatMessage, Dimension, UserProfile
from persona_quiz.core.question_bank import load_templates
from persona_quiz.providers.base import Provider, UnconfiguredProvider
from persona_quiz.providers.exceptions import (
    CallTimeoutError,
    ConfigurationError,
    MalformedResponseError,
    TransportError,
    classify_openai_error,
    is_retryable,
)
from persona_quiz.providers.openai import ProviderImpl, get_client

REQUEST = httpx.Request("POST", "https://api.test/v1/chat/completions")


def _completion(content, reasoning_details=None):
    fields = {"content": content}
    if reasoning_details is not None:
        fields["reasoning_details"] = reasoning_details
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(**fields))])


def _question_body(template, text="While debugging with teammates, you usually:", **overrides):
    body = {
        "id": template.id,
        "text": text,
        "dimension": "E-I",
        "optionA": {"text": "Talk it through out loud.", "value": template.choice_a.value},
        "optionB": {"text": "Trace it quietly on your own.", "value": template.choice_b.value},
    }
    body.update(overrides)
    return json.dumps(body)


@pytest.fixture
def profile():
    return UserProfile(age=31, occupation="Engineer", gender_label="Male", interest_tags=["climbing", "jazz"])


@pytest.fixture
def template():
    return load_templates()[0]


@pytest.fixture
def provider():
    get_client.cache_clear()
    impl = ProviderImpl(GatewayConfig(api_key="sk-test", model="gpt-test", response_language="Dutch"))
    impl.client = Mock()
    impl.client.chat.completions.create = AsyncMock()
    return impl


class TestProviderConstruction:
    def test_missing_key_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            ProviderImpl(GatewayConfig(api_key=None))

    def test_placeholder_key_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            ProviderImpl(GatewayConfig(api_key="your_openai_api_key_here"))

    def test_offline_provider_when_unconfigured(self):
        built = Provider.from_config_or_offline(GatewayConfig(api_key=""))

        assert isinstance(built, UnconfiguredProvider)

    @pytest.mark.asyncio
    async def test_offline_provider_never_calls_out(self, profile, template):
        built = Provider.from_config_or_offline(GatewayConfig(api_key=None))

        with pytest.raises(ConfigurationError):
            await built.generate_single_question(profile, template)

    def test_client_is_built_once_per_configuration(self):
        get_client.cache_clear()

        first = ProviderImpl(GatewayConfig(api_key="sk-one", model="a"))
        second = ProviderImpl(GatewayConfig(api_key="sk-one", model="b"))
        other = ProviderImpl(GatewayConfig(api_key="sk-two", model="a"))

        assert first.client is second.client
        assert first.client is not other.client
        assert first.client.max_retries == 0


class TestQuestionGeneration:
    @pytest.mark.asyncio
    async def test_parses_personalized_question(self, provider, profile, template):
        provider.client.chat.completions.create.return_value = _completion(_question_body(template))

        item = await provider.generate_single_question(profile, template)

        assert item.id == template.id
        assert item.dimension == Dimension.EI
        assert item.rendered_text == "While debugging with teammates, you usually:"
        assert item.choice_values() == {"E", "I"}

    @pytest.mark.asyncio
    async def test_request_shape(self, provider, profile, template):
        provider.client.chat.completions.create.return_value = _completion(_question_body(template))

        await provider.generate_single_question(profile, template)

        kwargs = provider.client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["temperature"] == 0.7
        messages = kwargs["messages"]
        assert [m["role"] for m in messages] == ["system", "user"]
        assert "Engineer" in messages[1]["content"]
        assert "climbing, jazz" in messages[1]["content"]
        assert template.prompt_text in messages[1]["content"]
        assert "Dutch" in messages[1]["content"]

    @pytest.mark.asyncio
    async def test_changed_option_values_are_rejected(self, provider, profile, template):
        body = _question_body(template, optionB={"text": "Something else", "value": "X"})
        provider.client.chat.completions.create.return_value = _completion(body)

        with pytest.raises(MalformedResponseError, match="Option values"):
            await provider.generate_single_question(profile, template)

    @pytest.mark.asyncio
    async def test_changed_dimension_is_rejected(self, provider, profile, template):
        provider.client.chat.completions.create.return_value = _completion(_question_body(template, dimension="T-F"))

        with pytest.raises(MalformedResponseError, match="Dimension changed"):
            await provider.generate_single_question(profile, template)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "content",
        ["", "   ", "not json at all", "[1, 2, 3]", json.dumps({"id": 1, "dimension": "E-I"})],
    )
    async def test_unusable_bodies_are_malformed(self, provider, profile, template, content):
        provider.client.chat.completions.create.return_value = _completion(content)

        with pytest.raises(MalformedResponseError):
            await provider.generate_single_question(profile, template)

    @pytest.mark.asyncio
    async def test_missing_choices_are_malformed(self, provider, profile, template):
        provider.client.chat.completions.create.return_value = SimpleNamespace(choices=[])

        with pytest.raises(MalformedResponseError):
            await provider.generate_single_question(profile, template)

    @pytest.mark.asyncio
    async def test_sdk_errors_are_classified(self, provider, profile, template):
        response = httpx.Response(401, request=REQUEST)
        provider.client.chat.completions.create.side_effect = openai.AuthenticationError(
            "Incorrect API key provided", response=response, body=None
        )

        with pytest.raises(TransportError) as exc_info:
            await provider.generate_single_question(profile, template)

        assert exc_info.value.is_auth_failure
        assert not is_retryable(exc_info.value)


class TestErrorClassification:
    def test_rate_limit_is_retryable_transport_error(self):
        error = openai.RateLimitError("slow down", response=httpx.Response(429, request=REQUEST), body=None)

        classified = classify_openai_error(error)

        assert isinstance(classified, TransportError)
        assert classified.status_code == 429
        assert is_retryable(classified)

    def test_timeout(self):
        classified = classify_openai_error(openai.APITimeoutError(request=REQUEST))

        assert isinstance(classified, CallTimeoutError)
        assert isinstance(classified, TimeoutError)

    def test_connection_error(self):
        classified = classify_openai_error(openai.APIConnectionError(request=REQUEST))

        assert isinstance(classified, TransportError)
        assert classified.status_code is None
        assert is_retryable(classified)

    def test_gateway_errors_pass_through(self):
        original = MalformedResponseError("bad")

        assert classify_openai_error(original) is original


class TestAnalysisAndChat:
    @pytest.mark.asyncio
    async def test_analysis_accepts_alternate_keys(self, provider, profile):
        body = {
            "overview": "You plan ahead.",
            "strengths": ["Focus"],
            "growthAreas": ["Delegation"],
            "careerSuggestions": ["Architect"],
            "communicationStyle": "Direct.",
            "developmentTips": ["Rest"],
        }
        provider.client.chat.completions.create.return_value = _completion(json.dumps(body))

        analysis = await provider.analyze_personality("INTJ", {"I": 4}, profile)

        assert analysis.summary == "You plan ahead."
        assert analysis.challenges == ["Delegation"]
        assert analysis.career_suggestions == ["Architect"]
        assert analysis.relationships == "Direct."
        assert analysis.growth_tips == ["Rest"]

    @pytest.mark.asyncio
    async def test_chat_carries_continuation_tokens(self, provider, profile):
        provider.client.chat.completions.create.return_value = _completion(
            json.dumps({"content": "Plan your week on Sunday."}), reasoning_details=[{"id": "r2"}]
        )
        history = [
            ChatMessage(role="user", content="How do I relax?"),
            ChatMessage(role="assistant", content="Take walks.", continuation=[{"id": "r1"}]),
        ]

        reply = await provider.answer_question("And at work?", "INTJ", {"I": 4}, profile, history)

        assert reply.content == "Plan your week on Sunday."
        assert reply.reasoning_details == [{"id": "r2"}]
        kwargs = provider.client.chat.completions.create.await_args.kwargs
        messages = kwargs["messages"]
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[2]["reasoning_details"] == [{"id": "r1"}]
        assert "reasoning_details" not in messages[1]
        assert "And at work?" in messages[3]["content"]
        assert kwargs["temperature"] == 0.8


class TestGatewayConfig:
    def test_from_env_reads_variables(self, monkeypatch):
        monkeypatch.setenv("PERSONA_QUIZ_API_KEY", "sk-env")
        monkeypatch.setenv("PERSONA_QUIZ_MODEL", "gpt-env")
        monkeypatch.delenv("PERSONA_QUIZ_BASE_URL", raising=False)
        monkeypatch.delenv("OPENAI_BASE_URL", raising=False)

        with patch("persona_quiz.core.config.load_dotenv"):
            config = GatewayConfig.from_env()

        assert config.api_key == "sk-env"
        assert config.model == "gpt-env"
        assert config.base_url is None
        assert config.has_credentials

    def test_explicit_overrides_win(self, monkeypatch):
        monkeypatch.setenv("PERSONA_QUIZ_MODEL", "gpt-env")

        with patch("persona_quiz.core.config.load_dotenv"):
            config = GatewayConfig.from_env(model="gpt-cli", base_url=None)

        assert config.model == "gpt-cli"

    def test_openai_key_is_fallback(self, monkeypatch):
        monkeypatch.delenv("PERSONA_QUIZ_API_KEY", raising=False)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")

        with patch("persona_quiz.core.config.load_dotenv"):
            config = GatewayConfig.from_env()

        assert config.api_key == "sk-openai"

    def test_api_key_hidden_from_repr(self):
        assert "sk-secret" not in repr(GatewayConfig(api_key="sk-secret"))

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError):
            GatewayConfig(request_timeout_s=0)
        with pytest.raises(ValueError):
            GatewayConfig(max_attempts=0)
        with pytest.raises(ValueError):
            GatewayConfig(model="  ")
