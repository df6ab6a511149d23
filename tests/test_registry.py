from p2pcast.services import ConnectionRegistry, Role


def test_register_starts_unassigned():
    registry = ConnectionRegistry()
    conn = registry.register("a")
    assert conn.id == "a"
    assert conn.role is Role.UNASSIGNED
    assert registry.get("a") is conn


def test_register_is_idempotent_and_keeps_role():
    registry = ConnectionRegistry()
    registry.register("a")
    registry.set_role("a", Role.VIEWER)
    assert registry.register("a").role is Role.VIEWER
    assert len(registry) == 1


def test_list_by_role_keeps_insertion_order():
    registry = ConnectionRegistry()
    for conn_id in ("v1", "b", "v2", "v3"):
        registry.register(conn_id)
    for conn_id in ("v3", "v1", "v2"):
        registry.set_role(conn_id, Role.VIEWER)
    registry.set_role("b", Role.BROADCASTER)

    assert registry.list_by_role(Role.VIEWER) == ["v1", "v2", "v3"]
    assert registry.list_by_role(Role.BROADCASTER) == ["b"]


def test_remove_unknown_id_is_noop():
    registry = ConnectionRegistry()
    registry.register("a")
    assert registry.remove("a") is not None
    assert registry.remove("a") is None
    assert registry.remove("ghost") is None
    assert "a" not in registry


def test_set_role_on_unknown_id_does_not_register():
    registry = ConnectionRegistry()
    registry.set_role("ghost", Role.VIEWER)
    assert registry.get("ghost") is None
