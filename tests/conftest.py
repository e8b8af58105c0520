"""
Shared fixtures for the Pressline test suite.

Every collaborator is replaced by an in-memory fake, so the suite runs
against a temp SQLite database WITHOUT any external services.
"""

from datetime import datetime, timedelta
from itertools import count
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from pressline.app import build_app
from pressline.errors import ExternalUnavailable
from pressline.providers.base import (
    ApprovalRequest,
    GenerationProvider,
    JobKind,
    JobSpec,
    JobState,
    JobStatus,
    MessagingChannel,
    PodcastEpisode,
    PodcastHost,
    PostDraft,
    PublishingTarget,
    RemotePost,
)
from pressline.settings import (
    PipelineSettings,
    SecuritySettings,
    Settings,
    SlackSettings,
    StorageSettings,
)
from pressline.storage import ContentStore, init_database
from pressline.storage.models import ContentPiece, ContentStatus, Topic, TopicStatus, utcnow

APPROVER = "U_BEN"
TRIGGER_TOKEN = "trigger-token"
SIGNING_SECRET = "slack-signing-secret"


def article(keyword: str = "fbar", paragraphs: int = 24) -> str:
    """Hebrew-style article HTML that scores 90 against *keyword*."""
    filler = " ".join(["מילה"] * 48)
    body = "\n".join(f"<p>{keyword} {filler} מילה</p>" for _ in range(paragraphs))
    return f"<h2>{keyword} guide</h2>\n{body}"


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------

class FakeTextProvider(GenerationProvider):
    """Text generation that answers every job immediately."""

    OUTPUTS = {
        JobKind.ARTICLE: article(),
        JobKind.TRANSLATION: "<h2>FBAR guide</h2>\n<p>" + " ".join(["translated"] * 300) + "</p>",
        JobKind.ENHANCEMENT: article(),
        JobKind.SOCIAL: "Filing an FBAR? Read our guide before the deadline. #tax #expats",
        JobKind.TITLE: "FBAR Basics for First-Time Filers",
        JobKind.PODCAST_SCRIPT: " ".join(["spoken"] * 300),
        JobKind.SHOW_NOTES: "Everything first-time filers need to know about the FBAR.",
    }

    def __init__(self):
        self.jobs: list[JobSpec] = []
        self.outputs: dict[JobKind, str] = dict(self.OUTPUTS)
        self.failing: set[JobKind] = set()
        self._ids = count(1)
        self._tasks: dict[str, JobSpec] = {}

    @property
    def name(self) -> str:
        return "fake-text"

    async def submit(self, job: JobSpec) -> str:
        self.jobs.append(job)
        task_id = f"{self.name}-{next(self._ids)}"
        self._tasks[task_id] = job
        return task_id

    async def poll(self, task_id: str) -> JobStatus:
        job = self._tasks[task_id]
        if job.kind in self.failing:
            return JobStatus(task_id=task_id, state=JobState.FAILED, error=f"{job.kind.value} failed")
        return JobStatus(task_id=task_id, state=JobState.SUCCEEDED, output=self.outputs[job.kind])

    def kinds(self) -> list[JobKind]:
        return [job.kind for job in self.jobs]


class FakeAudioProvider(FakeTextProvider):
    OUTPUTS = {JobKind.SPEECH: "file:///tmp/pressline/episode.mp3"}

    @property
    def name(self) -> str:
        return "fake-audio"


class FakeMediaProvider(FakeTextProvider):
    OUTPUTS = {
        JobKind.IMAGE: "https://cdn.example.com/featured.png",
        JobKind.VIDEO: "https://cdn.example.com/explainer.mp4",
    }

    @property
    def name(self) -> str:
        return "fake-media"


class FakePublisher(PublishingTarget):
    """In-memory WordPress."""

    def __init__(self):
        self.posts: dict[int, dict[str, Any]] = {}
        self.drafts: list[PostDraft] = []
        self.published: list[int] = []
        self.updates: list[tuple[int, dict[str, Any]]] = []
        self.fail_create = False
        self._ids = count(100)

    def _remote(self, post_id: int) -> RemotePost:
        post = self.posts[post_id]
        return RemotePost(
            id=post_id,
            status=post["status"],
            link=f"https://tax4us.co.il/?p={post_id}",
            title=post.get("title", ""),
        )

    async def create_draft_post(self, draft: PostDraft) -> RemotePost:
        if self.fail_create:
            raise ExternalUnavailable("wordpress", "HTTP 503")
        post_id = next(self._ids)
        self.drafts.append(draft)
        self.posts[post_id] = {"status": "draft", "title": draft.title, "lang": draft.lang}
        return self._remote(post_id)

    async def publish_post(self, post_id: int) -> RemotePost:
        self.posts.setdefault(post_id, {"status": "draft"})["status"] = "publish"
        self.published.append(post_id)
        return self._remote(post_id)

    async def update_post(self, post_id: int, fields: dict[str, Any]) -> RemotePost:
        self.posts.setdefault(post_id, {"status": "publish"}).update(fields)
        self.updates.append((post_id, fields))
        return self._remote(post_id)

    async def get_post(self, post_id: int) -> Optional[RemotePost]:
        return self._remote(post_id) if post_id in self.posts else None


class FakeMessenger(MessagingChannel):
    """Records outbound review requests and notifications."""

    def __init__(self):
        self.requests: list[ApprovalRequest] = []
        self.messages: list[str] = []
        self.fail = False
        self._ids = count(1)

    async def send_approval_request(self, request: ApprovalRequest) -> str:
        if self.fail:
            raise ExternalUnavailable("slack", "channel_not_found", critical=False)
        self.requests.append(request)
        return f"1700000000.{next(self._ids):06d}"

    async def send_message(self, text: str) -> Optional[str]:
        if self.fail:
            raise ExternalUnavailable("slack", "channel_not_found", critical=False)
        self.messages.append(text)
        return f"1700000001.{next(self._ids):06d}"


class FakePodcastHost(PodcastHost):
    """Records uploaded episodes."""

    def __init__(self):
        self.uploads: list[tuple[str, str, str]] = []
        self.fail = False
        self._ids = count(1)

    async def upload_episode(self, audio_url: str, title: str, show_notes: str) -> PodcastEpisode:
        if self.fail:
            raise ExternalUnavailable("captivate", "HTTP 502 uploading episode")
        self.uploads.append((audio_url, title, show_notes))
        episode_id = f"ep_{next(self._ids)}"
        return PodcastEpisode(id=episode_id, url=f"https://podcasts.example.com/{episode_id}", title=title)


# ---------------------------------------------------------------------------
# Settings and storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path):
    """Settings with fast polling and a single authorized approver."""
    return Settings(
        pipeline=PipelineSettings(
            job_poll_interval_seconds=0.01,
            job_timeout_seconds=5,
            stage_timeout_seconds=10,
            min_hebrew_words=50,
        ),
        storage=StorageSettings(db_path=tmp_path / "pressline.db", output_dir=tmp_path / "output"),
        slack=SlackSettings(approver_ids=[APPROVER], signing_secret=SIGNING_SECRET),
        security=SecuritySettings(token=TRIGGER_TOKEN),
    )


@pytest.fixture
async def db(settings):
    database = await init_database(settings.storage.db_path)
    yield database
    await database.close()


@pytest.fixture
def store(db):
    return ContentStore(db)


# ---------------------------------------------------------------------------
# Collaborator fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def text_provider():
    return FakeTextProvider()


@pytest.fixture
def audio_provider():
    return FakeAudioProvider()


@pytest.fixture
def media_provider():
    return FakeMediaProvider()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def podcast_host():
    return FakePodcastHost()


@pytest.fixture
async def app(settings, db, text_provider, audio_provider, media_provider, publisher, messenger, podcast_host):
    """A fully wired PipelineApp over fakes."""
    pipeline_app = await build_app(
        settings,
        db=db,
        text=text_provider,
        audio=audio_provider,
        media=media_provider,
        publisher=publisher,
        messenger=messenger,
        podcast_host=podcast_host,
    )
    yield pipeline_app
    await pipeline_app.close()


# ---------------------------------------------------------------------------
# Record factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_topic(store):
    """Persist a topic, defaulting to an approved FBAR topic."""

    async def _make(**fields) -> Topic:
        fields.setdefault("title_en", "FBAR filing guide")
        fields.setdefault("keywords", ["fbar"])
        fields.setdefault("status", TopicStatus.APPROVED)
        return await store.put_topic(Topic(**fields))

    return _make


@pytest.fixture
def make_piece(store, make_topic):
    """Persist a content piece (and its topic), defaulting to a healthy published article."""

    async def _make(topic: Optional[Topic] = None, **fields) -> ContentPiece:
        topic = topic or await make_topic()
        fields.setdefault("body_he", article())
        fields.setdefault("body_en", "<p>English version</p>")
        fields.setdefault("focus_keyword", "fbar")
        fields.setdefault("seo_score", 90)
        fields.setdefault("status", ContentStatus.PUBLISHED)
        fields.setdefault("wp_post_id", 500)
        return await store.put_content_piece(ContentPiece(topic_id=topic.id, **fields))

    return _make


@pytest.fixture
def backdate(db):
    """Move a content piece's updated_at into the past, bypassing the repository."""

    async def _backdate(content_id: str, hours: float) -> datetime:
        when = utcnow() - timedelta(hours=hours)
        await db.connection.execute(
            "UPDATE content_pieces SET updated_at = ? WHERE id = ?",
            (when.isoformat(), content_id),
        )
        await db.connection.commit()
        return when

    return _backdate


# ---------------------------------------------------------------------------
# HTTP mock fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_aiohttp_response():
    """Create a mock aiohttp response factory."""

    def _make(status=200, json_data=None):
        resp = AsyncMock()
        resp.status = status
        resp.json = AsyncMock(return_value=json_data if json_data is not None else {})
        resp.__aenter__ = AsyncMock(return_value=resp)
        resp.__aexit__ = AsyncMock(return_value=False)
        return resp

    return _make


@pytest.fixture
def mock_aiohttp_session(mock_aiohttp_response):
    """Create a mock aiohttp ClientSession that is already open."""
    session = MagicMock()
    default_resp = mock_aiohttp_response(200, {"ok": True})
    session.closed = False
    session.request = MagicMock(return_value=default_resp)
    session.post = MagicMock(return_value=default_resp)
    session.close = AsyncMock()
    return session
