"""Tests for the HTTP-backed collaborators and the job poller."""

import json
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from pressline.errors import ExternalUnavailable
from pressline.providers.base import (
    ApprovalRequest,
    GenerationProvider,
    JobKind,
    JobSpec,
    JobState,
    JobStatus,
    PostDraft,
    await_job,
)
from pressline.providers.captivate import CaptivateConfig, CaptivateHost
from pressline.providers.elevenlabs_audio import ElevenLabsAudioConfig, ElevenLabsAudioProvider
from pressline.providers.kie_media import KieConfig, KieMediaProvider
from pressline.providers.openai_text import OpenAITextProvider, TextProviderConfig
from pressline.providers.slack import SlackChannel, SlackConfig
from pressline.providers.wordpress import WordPressConfig, WordPressTarget


# ---------------------------------------------------------------------------
# WordPress
# ---------------------------------------------------------------------------

@pytest.fixture
def wordpress(mock_aiohttp_session):
    target = WordPressTarget(WordPressConfig(username="editor", app_password="xxxx yyyy"))
    target._session = mock_aiohttp_session
    return target


class TestWordPressTarget:

    async def test_english_draft_links_to_hebrew_original(self, wordpress, mock_aiohttp_session, mock_aiohttp_response):
        mock_aiohttp_session.request.return_value = mock_aiohttp_response(201, {
            "id": 321,
            "status": "draft",
            "link": "https://tax4us.co.il/en/?p=321",
            "title": {"raw": "FBAR filing guide"},
        })

        post = await wordpress.create_draft_post(
            PostDraft(title="FBAR filing guide", content="<p>English</p>", lang="en", translation_of=500)
        )

        assert post.id == 321
        assert post.title == "FBAR filing guide"
        args, kwargs = mock_aiohttp_session.request.call_args
        assert args == ("POST", "https://tax4us.co.il/wp-json/wp/v2/posts")
        assert kwargs["params"] == {"lang": "en", "translations[he]": "500"}
        assert kwargs["json"]["status"] == "draft"

    async def test_get_missing_post_returns_none(self, wordpress, mock_aiohttp_session, mock_aiohttp_response):
        mock_aiohttp_session.request.return_value = mock_aiohttp_response(404, {"code": "rest_post_invalid_id"})

        assert await wordpress.get_post(999) is None

    async def test_publish_missing_post_raises(self, wordpress, mock_aiohttp_session, mock_aiohttp_response):
        mock_aiohttp_session.request.return_value = mock_aiohttp_response(404, {"code": "rest_post_invalid_id"})

        with pytest.raises(ExternalUnavailable, match="not found"):
            await wordpress.publish_post(999)

    async def test_server_error_raises(self, wordpress, mock_aiohttp_session, mock_aiohttp_response):
        mock_aiohttp_session.request.return_value = mock_aiohttp_response(500, {"message": "database error"})

        with pytest.raises(ExternalUnavailable, match="HTTP 500"):
            await wordpress.get_post(1)

    async def test_unconfigured_target(self):
        target = WordPressTarget(WordPressConfig())

        with pytest.raises(ExternalUnavailable, match="not configured"):
            await target.get_post(1)


# ---------------------------------------------------------------------------
# Slack
# ---------------------------------------------------------------------------

@pytest.fixture
def slack(mock_aiohttp_session):
    channel = SlackChannel(SlackConfig(bot_token="xoxb-test"))
    channel._session = mock_aiohttp_session
    return channel


class TestSlackChannel:

    async def test_approval_request_has_decision_buttons(self, slack, mock_aiohttp_session, mock_aiohttp_response):
        mock_aiohttp_session.post.return_value = mock_aiohttp_response(200, {"ok": True, "ts": "1700000000.000100"})

        ts = await slack.send_approval_request(ApprovalRequest(
            approval_id="approval_1",
            approval_type="content_review",
            entity_id="content_1",
            title="FBAR filing guide",
        ))

        assert ts == "1700000000.000100"
        payload = mock_aiohttp_session.post.call_args.kwargs["json"]
        assert payload["channel"] == "#content-approvals"
        buttons = payload["blocks"][1]["elements"]
        assert [b["action_id"] for b in buttons] == ["approve", "changes_requested", "reject"]
        assert {b["value"] for b in buttons} == {"approval_1"}

    async def test_api_error_is_not_critical(self, slack, mock_aiohttp_session, mock_aiohttp_response):
        mock_aiohttp_session.post.return_value = mock_aiohttp_response(200, {"ok": False, "error": "channel_not_found"})

        with pytest.raises(ExternalUnavailable) as excinfo:
            await slack.send_message("hello")

        assert excinfo.value.critical is False
        assert "channel_not_found" in str(excinfo.value)

    async def test_missing_token(self):
        channel = SlackChannel(SlackConfig())

        with pytest.raises(ExternalUnavailable) as excinfo:
            await channel.send_message("hello")
        assert excinfo.value.critical is False


# ---------------------------------------------------------------------------
# Kie.ai
# ---------------------------------------------------------------------------

@pytest.fixture
def kie(mock_aiohttp_session):
    provider = KieMediaProvider(KieConfig(api_key="kie-test"))
    provider._session = mock_aiohttp_session
    return provider


class TestKieMediaProvider:

    async def test_video_submit(self, kie, mock_aiohttp_session, mock_aiohttp_response):
        mock_aiohttp_session.request.return_value = mock_aiohttp_response(200, {"data": {"taskId": "veo_1"}})

        task_id = await kie.submit(JobSpec(kind=JobKind.VIDEO, prompt="FBAR explainer"))

        assert task_id == "veo_1"
        args = mock_aiohttp_session.request.call_args.args
        assert args == ("POST", "https://api.kie.ai/api/v1/veo/generate")

    async def test_submit_without_task_id(self, kie, mock_aiohttp_session, mock_aiohttp_response):
        mock_aiohttp_session.request.return_value = mock_aiohttp_response(200, {"data": {}})

        with pytest.raises(ExternalUnavailable, match="no task id"):
            await kie.submit(JobSpec(kind=JobKind.IMAGE, prompt="featured image"))

    async def test_poll_success(self, kie, mock_aiohttp_session, mock_aiohttp_response):
        result = json.dumps({"resultUrls": ["https://cdn.kie.ai/out.png"]})
        mock_aiohttp_session.request.return_value = mock_aiohttp_response(
            200, {"data": {"state": "success", "resultJson": result}}
        )

        status = await kie.poll("img_1")

        assert status.state is JobState.SUCCEEDED
        assert status.output == "https://cdn.kie.ai/out.png"

    async def test_poll_failure(self, kie, mock_aiohttp_session, mock_aiohttp_response):
        mock_aiohttp_session.request.return_value = mock_aiohttp_response(
            200, {"data": {"state": "fail", "failMsg": "content policy"}}
        )

        status = await kie.poll("img_1")

        assert status.state is JobState.FAILED
        assert status.error == "content policy"

    async def test_poll_in_progress(self, kie, mock_aiohttp_session, mock_aiohttp_response):
        mock_aiohttp_session.request.return_value = mock_aiohttp_response(200, {"data": {"state": "generating"}})

        assert (await kie.poll("img_1")).state is JobState.RUNNING


# ---------------------------------------------------------------------------
# Captivate.fm
# ---------------------------------------------------------------------------

@pytest.fixture
def captivate(mock_aiohttp_session):
    host = CaptivateHost(CaptivateConfig(api_key="cap-test", show_id="show_1"))
    host._session = mock_aiohttp_session
    return host


class TestCaptivateHost:

    async def test_uploads_local_episode(self, captivate, mock_aiohttp_session, mock_aiohttp_response, tmp_path):
        audio = tmp_path / "episode.mp3"
        audio.write_bytes(b"ID3 audio")
        mock_aiohttp_session.post.return_value = mock_aiohttp_response(201, {
            "episode": {"id": 42, "episode_url": "https://podcasts.captivate.fm/episode/42"},
        })

        episode = await captivate.upload_episode(audio.as_uri(), "FBAR filing guide", "Show notes")

        assert episode.id == "42"
        assert episode.url == "https://podcasts.captivate.fm/episode/42"
        assert episode.title == "FBAR filing guide"
        args, kwargs = mock_aiohttp_session.post.call_args
        assert args == ("https://api.captivate.fm/episodes",)
        assert isinstance(kwargs["data"], aiohttp.FormData)

    async def test_downloads_remote_audio(self, captivate, mock_aiohttp_session, mock_aiohttp_response):
        download = mock_aiohttp_response(200)
        download.read = AsyncMock(return_value=b"ID3 audio")
        mock_aiohttp_session.get = MagicMock(return_value=download)
        mock_aiohttp_session.post.return_value = mock_aiohttp_response(201, {"id": "ep_9"})

        episode = await captivate.upload_episode("https://cdn.example.com/ep.mp3", "Title", "Notes")

        assert episode.id == "ep_9"
        mock_aiohttp_session.get.assert_called_once_with("https://cdn.example.com/ep.mp3")

    async def test_missing_audio_file(self, captivate, tmp_path):
        with pytest.raises(ExternalUnavailable, match="cannot read episode audio"):
            await captivate.upload_episode((tmp_path / "gone.mp3").as_uri(), "Title", "Notes")

    async def test_rejected_upload(self, captivate, mock_aiohttp_session, mock_aiohttp_response, tmp_path):
        audio = tmp_path / "episode.mp3"
        audio.write_bytes(b"ID3 audio")
        mock_aiohttp_session.post.return_value = mock_aiohttp_response(401, {"error": "invalid token"})

        with pytest.raises(ExternalUnavailable, match="HTTP 401"):
            await captivate.upload_episode(audio.as_uri(), "Title", "Notes")

    async def test_unconfigured_host(self):
        host = CaptivateHost(CaptivateConfig())

        with pytest.raises(ExternalUnavailable, match="not configured"):
            await host.upload_episode("file:///tmp/ep.mp3", "Title", "Notes")


# ---------------------------------------------------------------------------
# Job poller
# ---------------------------------------------------------------------------

class NeverFinishes(GenerationProvider):

    @property
    def name(self) -> str:
        return "slowpoke"

    async def submit(self, job: JobSpec) -> str:
        return "task_1"

    async def poll(self, task_id: str) -> JobStatus:
        return JobStatus(task_id=task_id, state=JobState.RUNNING)


class BrokenSubmit(NeverFinishes):

    async def submit(self, job: JobSpec) -> str:
        raise RuntimeError("connection reset")


class TestAwaitJob:

    async def test_returns_output(self, text_provider):
        output = await await_job(text_provider, JobSpec(kind=JobKind.TITLE, prompt="title"), poll_interval=0.01)
        assert output == "FBAR Basics for First-Time Filers"

    async def test_failed_job_carries_criticality(self, text_provider):
        text_provider.failing.add(JobKind.SOCIAL)

        with pytest.raises(ExternalUnavailable) as excinfo:
            await await_job(text_provider, JobSpec(kind=JobKind.SOCIAL, prompt="post"), critical=False)

        assert excinfo.value.critical is False
        assert "social failed" in str(excinfo.value)

    async def test_times_out(self):
        with pytest.raises(ExternalUnavailable, match="timed out"):
            await await_job(NeverFinishes(), JobSpec(kind=JobKind.IMAGE, prompt="x"), poll_interval=0.01, timeout=0.05)

    async def test_submit_exception_is_wrapped(self):
        with pytest.raises(ExternalUnavailable, match="submit failed: connection reset"):
            await await_job(BrokenSubmit(), JobSpec(kind=JobKind.IMAGE, prompt="x"))


# ---------------------------------------------------------------------------
# In-process providers
# ---------------------------------------------------------------------------

class TestInProcessResults:

    async def test_text_result_is_released_after_poll(self):
        provider = OpenAITextProvider(TextProviderConfig(api_key="sk-test"))
        completion = MagicMock()
        completion.choices = [MagicMock(message=MagicMock(content="  FBAR guide  "))]
        provider._client = MagicMock()
        provider._client.chat.completions.create = AsyncMock(return_value=completion)

        task_id = await provider.submit(JobSpec(kind=JobKind.TITLE, prompt="title"))
        status = await provider.poll(task_id)

        assert status.state is JobState.SUCCEEDED
        assert status.output == "FBAR guide"
        assert provider._results == {}
        assert (await provider.poll(task_id)).state is JobState.FAILED

    async def test_audio_result_is_released_after_poll(self, tmp_path):
        provider = ElevenLabsAudioProvider(ElevenLabsAudioConfig(api_key="el-test", output_dir=tmp_path))
        provider._generate = AsyncMock(return_value=b"ID3")

        task_id = await provider.submit(JobSpec(kind=JobKind.SPEECH, prompt="script"))
        status = await provider.poll(task_id)

        assert status.state is JobState.SUCCEEDED
        assert status.output.startswith("file://")
        assert provider._results == {}
