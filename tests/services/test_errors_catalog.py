import pytest

from clusterupgrade.errors_catalog import actionable_error


def test_actionable_error_formats_message_with_suggested_action():
    message = actionable_error("stop_timeout", node=2, timeout=10.0)

    assert "Node 2 did not stop within 10.0s." in message
    assert "Suggested action:" in message


def test_actionable_error_rejects_unknown_code():
    with pytest.raises(KeyError):
        actionable_error("no_such_error")
