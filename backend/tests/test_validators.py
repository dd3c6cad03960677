"""Per-platform content validation rules"""
import pytest

from crosspost.schemas.posts import MediaAttachment, MediaType, PostContent
from crosspost.services.publishing.validators import VALIDATORS, validate_content


def _content(text="Hello", media=None, **metadata):
    metadata.setdefault("user_id", "user-1")
    return PostContent(text=text, media=media or [], metadata=metadata)


def _image(url="https://cdn.example.com/a.jpg"):
    return MediaAttachment(url=url, type=MediaType.IMAGE)


def _video(url="https://cdn.example.com/a.mp4"):
    return MediaAttachment(url=url, type=MediaType.VIDEO)


@pytest.mark.critical
class TestCommonRules:
    """Test rules shared by every platform"""

    @pytest.mark.parametrize("platform", sorted(VALIDATORS))
    def test_user_id_required(self, platform):
        """Test every platform demands the owning user"""
        content = PostContent(text="Hello", metadata={})
        assert "User ID is required in metadata" in validate_content(platform, content)

    def test_unknown_platform(self):
        """Test unsupported platforms are reported, not raised"""
        assert validate_content("myspace", _content()) == ["Unsupported platform: myspace"]

    def test_media_url_required(self):
        """Test media without a URL is rejected"""
        errors = validate_content("bluesky", _content(media=[MediaAttachment(url="")]))
        assert "Every media item requires a URL" in errors


@pytest.mark.critical
class TestTwitter:
    """Test Twitter limits"""

    def test_280_characters_allowed(self):
        """Test the limit itself is accepted"""
        assert validate_content("twitter", _content("x" * 280)) == []

    def test_281_characters_rejected(self):
        """Test one character over the limit"""
        errors = validate_content("twitter", _content("x" * 281))
        assert len(errors) == 1
        assert "character limit" in errors[0]

    def test_too_many_images(self):
        """Test the four image cap"""
        errors = validate_content("twitter", _content(media=[_image() for _ in range(5)]))
        assert errors == ["Twitter allows at most 4 images"]

    def test_reports_every_violation(self):
        """Test errors are collected rather than short-circuited"""
        errors = validate_content("twitter", PostContent(text="", media=[_video()], metadata={}))
        assert len(errors) == 3


@pytest.mark.high
class TestMediaPlatforms:
    """Test platforms built around media"""

    def test_tiktok_requires_single_video(self):
        """Test TikTok's one-video rule"""
        assert validate_content("tiktok", _content(media=[_video()])) == []
        assert validate_content("tiktok", _content(media=[_image()])) == ["TikTok requires exactly one video"]
        assert validate_content("tiktok", _content(media=[_video(), _video()])) == ["TikTok requires exactly one video"]

    def test_instagram_needs_media(self):
        """Test text-only Instagram posts are rejected"""
        assert validate_content("instagram", _content()) == ["Instagram requires at least one image or video"]

    def test_instagram_carousel_limit(self):
        """Test the ten item carousel cap"""
        errors = validate_content("instagram", _content(media=[_image() for _ in range(11)]))
        assert errors == ["Instagram allows at most 10 media items"]

    def test_instagram_hashtag_limit(self):
        """Test the thirty hashtag cap"""
        caption = " ".join(f"#tag{i}" for i in range(31))
        errors = validate_content("instagram", _content(caption, media=[_image()]))
        assert errors == ["Instagram allows at most 30 hashtags"]

    def test_pinterest_requires_board_and_image(self):
        """Test Pinterest's board and image rules"""
        errors = validate_content("pinterest", _content())
        assert "Pinterest requires an image" in errors
        assert "Pinterest requires metadata.board_id" in errors
        assert validate_content("pinterest", _content(media=[_image()], board_id="b1")) == []

    def test_youtube_title_and_privacy(self):
        """Test YouTube title length and privacy values"""
        assert validate_content("youtube", _content("Title\nDescription", media=[_video()])) == []
        errors = validate_content("youtube", _content("t" * 101, media=[_video()], privacy_status="secret"))
        assert "Title exceeds YouTube's 100 character limit" in errors
        assert any(error.startswith("privacy_status must be one of") for error in errors)

    def test_linkedin_rejects_video(self):
        """Test LinkedIn posts are images only"""
        assert validate_content("linkedin", _content(media=[_video()])) == ["LinkedIn posts support images only"]
