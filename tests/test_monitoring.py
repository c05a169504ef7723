from whatsapp_api.monitoring import SessionMonitor, SessionState


def test_register_and_transitions():
    monitor = SessionMonitor()
    monitor.register_session("alice")

    monitor.record_state("alice", SessionState.AWAITING_PAIRING)
    monitor.record_state("alice", SessionState.CONNECTED)
    monitor.record_state("alice", SessionState.DISCONNECTED, "NAVIGATION")

    metrics = monitor.get_session_metrics("alice")
    assert metrics.status == SessionState.DISCONNECTED
    assert metrics.connected_at is not None
    assert metrics.disconnect_count == 1
    assert metrics.last_detail == "NAVIGATION"


def test_metrics_survive_reregistration():
    monitor = SessionMonitor()
    monitor.register_session("alice")
    monitor.record_state("alice", SessionState.AUTH_FAILED, "rifiutato")
    monitor.record_recovery("alice")
    monitor.register_session("alice")

    metrics = monitor.get_session_metrics("alice")
    assert metrics.status == SessionState.INITIALIZING
    assert metrics.disconnect_count == 1
    assert metrics.recovery_count == 1


def test_system_stats():
    monitor = SessionMonitor()
    monitor.register_session("a")
    monitor.register_session("b")
    monitor.record_state("a", SessionState.CONNECTED)
    monitor.record_send("a", True)
    monitor.record_send("a", False, "timeout")
    monitor.record_send("unknown", True)

    stats = monitor.get_system_stats()
    assert stats["total_sessions"] == 2
    assert stats["connected_sessions"] == 1
    assert stats["status_counts"]["initializing"] == 1
    assert stats["messages_sent"] == 1
    assert stats["send_failures"] == 1
    assert monitor.get_session_metrics("a").to_dict()["status"] == "connected"


def test_forget_session():
    monitor = SessionMonitor()
    monitor.register_session("a")
    monitor.forget_session("a")
    assert monitor.get_session_metrics("a") is None
