import logging

from comitto.config import NotificationSettings
from comitto.notify import Notifier, Severity, Topic


def _collect(settings=None):
    notifier = Notifier(settings)
    seen = []
    notifier.subscribe(seen.append)
    return notifier, seen


def test_preferences_filter_topics():
    notifier, seen = _collect(NotificationSettings(on_push=False, on_trigger_fired=False))
    notifier.info("Committed: x", Topic.COMMIT)
    notifier.info("Changes pushed", Topic.PUSH)
    notifier.info("Auto-commit triggered", Topic.TRIGGER)
    notifier.error("boom")
    assert [note.message for note in seen] == ["Committed: x", "boom"]
    assert seen[-1].severity is Severity.ERROR


def test_master_switch_silences_listeners_but_still_logs(caplog):
    notifier, seen = _collect(NotificationSettings(show_notifications=False))
    with caplog.at_level(logging.WARNING, logger="comitto.notify"):
        notifier.warning("Push failed: rejected", Topic.PUSH)
    assert seen == []
    assert "Push failed: rejected" in caplog.text


def test_unsubscribe_and_broken_listener(caplog):
    notifier, seen = _collect()

    def broken(note):
        raise RuntimeError("display gone")

    unsubscribe = notifier.subscribe(broken)
    with caplog.at_level(logging.ERROR, logger="comitto.notify"):
        notifier.info("first")
    assert [note.message for note in seen] == ["first"]
    assert "Notification listener failed" in caplog.text

    unsubscribe()
    unsubscribe()
    notifier.info("second")
    assert len(seen) == 2
