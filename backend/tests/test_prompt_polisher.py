"""
提示词润色测试
"""
import base64
import json

import httpx
import pytest

from mediagen.main import app
from mediagen.services.prompt_polisher import PromptPolisher, get_prompt_polisher
from mediagen.services.providers.client import ProviderClient, ProviderError

CHAT = ("POST", "/v1/chat/completions")


def chat_reply(text):
    return httpx.Response(200, json={"choices": [{"message": {"content": text}}]})


@pytest.fixture
def polisher(provider):
    client = ProviderClient(
        api_key="test-key",
        base_url="https://api.302.ai",
        enabled=True,
        transport=provider.transport(),
    )
    return PromptPolisher(client)


class TestPromptPolisher:

    def test_text_only(self, polisher, provider):
        provider.add(*CHAT, chat_reply("  一位年轻女性在直播间展示手机壳  "))

        assert polisher.polish("售卖手机壳") == "一位年轻女性在直播间展示手机壳"

        body = json.loads(provider.requests[0].content)
        assert body["model"] == "gpt-4o-mini"
        assert body["messages"][0]["role"] == "system"
        assert "提示词润色专家" in body["messages"][0]["content"]
        assert body["messages"][1] == {"role": "user", "content": "售卖手机壳"}

    def test_with_reference_image(self, polisher, provider):
        """参考图转成 data URL 交给视觉模型"""
        provider.add("GET", "/ref.jpg",
                     httpx.Response(200, content=b"jpeg-bytes", headers={"content-type": "image/jpeg"}))
        provider.add(*CHAT, chat_reply("陶瓷盘展示"))

        assert polisher.polish("售卖盘子", image_url="https://cdn.example.com/ref.jpg") == "陶瓷盘展示"

        body = json.loads(provider.requests[-1].content)
        assert body["model"] == "gpt-4o"
        text, image = body["messages"][0]["content"]
        assert "请润色以下内容：售卖盘子" in text["text"]
        assert "{prompt}" not in text["text"]
        expected = "data:image/jpeg;base64," + base64.b64encode(b"jpeg-bytes").decode()
        assert image == {"type": "image_url", "image_url": {"url": expected}}

    def test_image_download_failure_falls_back_to_text(self, polisher, provider):
        provider.add("GET", "/ref.jpg", httpx.Response(404))
        provider.add(*CHAT, chat_reply("纯文本润色"))

        assert polisher.polish("售卖盘子", image_url="https://cdn.example.com/ref.jpg") == "纯文本润色"
        assert json.loads(provider.requests[-1].content)["model"] == "gpt-4o-mini"

    def test_empty_reply(self, polisher, provider):
        provider.add(*CHAT, httpx.Response(200, json={"choices": []}))
        with pytest.raises(ProviderError, match="No response"):
            polisher.polish("售卖盘子")


class TestPolishPromptAPI:
    """POST /api/polish-prompt"""

    @pytest.fixture(autouse=True)
    def override_polisher(self, polisher):
        app.dependency_overrides[get_prompt_polisher] = lambda: polisher
        yield
        app.dependency_overrides.pop(get_prompt_polisher, None)

    def test_polish(self, client, auth_headers, provider):
        provider.add(*CHAT, chat_reply("润色结果"))

        response = client.post("/api/polish-prompt", headers=auth_headers, json={"prompt": "售卖盘子"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "polished_prompt": "润色结果"}

    def test_blank_prompt(self, client, auth_headers):
        response = client.post("/api/polish-prompt", headers=auth_headers, json={"prompt": "   "})
        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_requires_login(self, client):
        response = client.post("/api/polish-prompt", json={"prompt": "售卖盘子"})
        assert response.status_code == 401

    def test_gateway_unavailable(self, client, auth_headers, provider):
        provider.add(*CHAT, httpx.Response(503, text="busy"))

        response = client.post("/api/polish-prompt", headers=auth_headers, json={"prompt": "售卖盘子"})

        assert response.status_code == 503
        assert response.json()["error_code"] == "NETWORK_ERROR"
        assert response.json()["retryable"] is True

    def test_gateway_rejects(self, client, auth_headers, provider):
        provider.add(*CHAT, httpx.Response(400, json={"error": {"message": "bad request"}}))

        response = client.post("/api/polish-prompt", headers=auth_headers, json={"prompt": "售卖盘子"})

        assert response.status_code == 500
        assert response.json()["error_code"] == "INTERNAL_ERROR"
