from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest
from conftest import git

from git_convoy.errors import RemoteRoleError
from git_convoy.remotes import RemoteRoleCache, RemoteRoles, resolve_remote_roles


class TestResolveRemoteRoles:
    def test_single_remote_plays_both_roles(self):
        assert resolve_remote_roles(["origin"]) == RemoteRoles(share="origin", base="origin")

    def test_origin_and_upstream(self):
        assert resolve_remote_roles(["upstream", "origin"]) == RemoteRoles("origin", "upstream")

    def test_unrecognized_pair_is_ambiguous(self):
        with pytest.raises(RemoteRoleError) as exc:
            resolve_remote_roles(["fork", "staging"], repo="app")
        assert exc.value.remotes == ["fork", "staging"]
        assert exc.value.repo == "app"
        assert "fork, staging" in str(exc.value)
        assert "remote.pushDefault" in str(exc.value)

    def test_push_default_prefers_upstream_as_base(self):
        roles = resolve_remote_roles(["fork", "upstream", "mirror"], push_default="fork")
        assert roles == RemoteRoles(share="fork", base="upstream")

    def test_push_default_with_one_other_remote(self):
        roles = resolve_remote_roles(["fork", "company"], push_default="fork")
        assert roles == RemoteRoles(share="fork", base="company")

    def test_push_default_with_several_others_is_ambiguous(self):
        with pytest.raises(RemoteRoleError, match="Cannot determine upstream remote"):
            resolve_remote_roles(["fork", "a", "b"], push_default="fork")

    def test_push_default_naming_unknown_remote_is_ignored(self):
        roles = resolve_remote_roles(["origin", "upstream"], push_default="gone")
        assert roles == RemoteRoles("origin", "upstream")

    def test_no_remotes(self):
        with pytest.raises(RemoteRoleError):
            resolve_remote_roles([])

    def test_origin_and_upstream_win_over_extra_remotes(self):
        roles = resolve_remote_roles(["mirror", "upstream", "origin"])
        assert roles == RemoteRoles(share="origin", base="upstream")

    def test_order_of_names_does_not_matter(self):
        a = resolve_remote_roles(["origin", "upstream"])
        b = resolve_remote_roles(["upstream", "origin"])
        assert a == b


class FakeOps:
    def __init__(self, names, push_default=None, delay=0.0):
        self.names = names
        self._push_default = push_default
        self.delay = delay
        self.calls = 0
        self.lock = threading.Lock()

    def remote_names(self):
        with self.lock:
            self.calls += 1
        time.sleep(self.delay)
        return list(self.names)

    def push_default(self):
        return self._push_default

    def default_branch(self, remote):
        with self.lock:
            self.calls += 1
        return "main"


class TestRemoteRoleCache:
    def test_concurrent_callers_share_one_resolution(self):
        cache = RemoteRoleCache()
        ops = FakeOps(["origin", "upstream"], delay=0.1)
        results = []

        def worker():
            results.append(cache.get_or_resolve(Path("/ws/app"), ops))

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert ops.calls == 1
        assert results == [RemoteRoles("origin", "upstream")] * 5

    def test_invalidate_forces_resolution(self):
        cache = RemoteRoleCache()
        ops = FakeOps(["origin"])
        cache.get_or_resolve(Path("/ws/app"), ops)
        cache.get_or_resolve(Path("/ws/app"), ops)
        assert ops.calls == 1

        cache.invalidate(Path("/ws/app"))
        cache.get_or_resolve(Path("/ws/app"), ops)
        assert ops.calls == 2

    def test_invalidate_all(self):
        cache = RemoteRoleCache()
        ops = FakeOps(["origin"])
        cache.get_or_resolve(Path("/ws/a"), ops)
        cache.get_or_resolve(Path("/ws/b"), ops)
        cache.invalidate_all()
        cache.get_or_resolve(Path("/ws/a"), ops)
        assert ops.calls == 3

    def test_errors_are_cached_and_reraised(self):
        cache = RemoteRoleCache()
        ops = FakeOps(["fork", "staging"])
        for _ in range(2):
            with pytest.raises(RemoteRoleError):
                cache.get_or_resolve(Path("/ws/app"), ops)
        assert ops.calls == 1

    def test_interrupted_resolution_releases_waiters(self):
        started = threading.Event()
        release = threading.Event()

        class InterruptedOps(FakeOps):
            def remote_names(self):
                started.set()
                release.wait(2)
                raise KeyboardInterrupt

        cache = RemoteRoleCache()
        ops = InterruptedOps([])
        outcomes = []

        def worker():
            try:
                cache.get_or_resolve(Path("/ws/app"), ops)
            except KeyboardInterrupt:
                outcomes.append("interrupted")

        owner = threading.Thread(target=worker)
        owner.start()
        assert started.wait(2)
        waiter = threading.Thread(target=worker)
        waiter.start()
        release.set()
        owner.join(2)
        waiter.join(2)

        assert not owner.is_alive() and not waiter.is_alive()
        assert outcomes == ["interrupted", "interrupted"]

        # Not cached: a later call resolves again.
        assert cache.get_or_resolve(Path("/ws/app"), FakeOps(["origin"])) == RemoteRoles("origin", "origin")

    def test_repository_without_remotes_resolves_to_none(self):
        assert RemoteRoleCache().get_or_resolve(Path("/ws/app"), FakeOps([])) is None

    def test_default_branch_is_memoized_until_invalidated(self):
        cache = RemoteRoleCache()
        ops = FakeOps(["origin"])
        assert cache.default_branch(Path("/ws/app"), "origin", ops) == "main"
        assert cache.default_branch(Path("/ws/app"), "origin", ops) == "main"
        assert ops.calls == 1
        cache.invalidate(Path("/ws/app"))
        cache.default_branch(Path("/ws/app"), "origin", ops)
        assert ops.calls == 2

    def test_resolves_real_repository(self, feature_clone: Path):
        git(feature_clone, "remote", "add", "upstream", str(feature_clone))
        roles = RemoteRoleCache().get_or_resolve(feature_clone)
        assert roles == RemoteRoles(share="origin", base="upstream")

    def test_real_push_default(self, feature_clone: Path):
        git(feature_clone, "remote", "rename", "origin", "fork")
        git(feature_clone, "remote", "add", "company", str(feature_clone))
        git(feature_clone, "config", "remote.pushDefault", "fork")
        roles = RemoteRoleCache().get_or_resolve(feature_clone)
        assert roles == RemoteRoles(share="fork", base="company")
