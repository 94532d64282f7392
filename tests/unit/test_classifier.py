"""Unit tests for push event classification."""

from deployhook.models.webhook import PushEvent
from deployhook.pipeline.classifier import classify, release_ref


def event(**payload):
    return PushEvent.from_payload(payload)


class TestReleaseRef:
    def test_short_branch(self):
        assert release_ref("main") == "refs/heads/main"

    def test_full_ref_passes_through(self):
        assert release_ref("refs/heads/production") == "refs/heads/production"


class TestClassify:
    def test_release_branch_deploys(self):
        c = classify(event(ref="refs/heads/main"), "main")
        assert c.should_deploy is True

    def test_feature_branch_ignored(self):
        c = classify(event(ref="refs/heads/feature-x"), "main")
        assert c.should_deploy is False
        assert "feature-x" in c.reason

    def test_branch_name_containing_main_is_ignored(self):
        assert classify(event(ref="refs/heads/main-backup"), "main").should_deploy is False

    def test_tag_ignored(self):
        assert classify(event(ref="refs/tags/main"), "main").should_deploy is False

    def test_custom_release_branch(self):
        assert classify(event(ref="refs/heads/production"), "production").should_deploy is True
        assert classify(event(ref="refs/heads/main"), "production").should_deploy is False

    def test_missing_ref_is_not_an_error(self):
        c = classify(event(), "main")
        assert c.should_deploy is False
        assert "ref" in c.reason

    def test_non_string_ref(self):
        assert classify(event(ref=["refs/heads/main"]), "main").should_deploy is False
        assert classify(event(ref=42), "main").should_deploy is False

    def test_deleted_release_branch_ignored(self):
        c = classify(event(ref="refs/heads/main", deleted=True), "main")
        assert c.should_deploy is False
        assert "deleted" in c.reason
