"""Tests for volume resolution and target naming."""

from docker_fleet.core.volumes import VolumeResolver, default_mountpoint, target_volume_name
from docker_fleet.models import VolumeMapping


class TestVolumeResolver:
    """Test resolving declared volumes to host paths."""

    async def test_bind_mount_passes_through(self, executor, source_server):
        resolver = VolumeResolver(executor)

        assert await resolver.resolve(source_server, "/srv/data") == "/srv/data"
        assert executor.commands == []

    async def test_named_volume_uses_inspected_mountpoint(self, executor, source_server):
        executor.respond("docker volume inspect", stdout="/mnt/docker/volumes/db/_data\n")
        resolver = VolumeResolver(executor)

        path = await resolver.resolve(source_server, "db")

        assert path == "/mnt/docker/volumes/db/_data"
        (command,) = executor.ran("docker volume inspect")
        assert "{{.Mountpoint}}" in command
        assert "|| echo /var/lib/docker/volumes/db/_data" in command

    async def test_named_volume_falls_back_to_default_root(self, executor, source_server):
        executor.respond("docker volume inspect", stdout="")
        resolver = VolumeResolver(executor)

        assert await resolver.resolve(source_server, "db") == default_mountpoint("db")

    async def test_resolve_all_keeps_order(self, executor, source_server):
        resolver = VolumeResolver(executor)
        volumes = [
            VolumeMapping(host="/a", container="/x"),
            VolumeMapping(host="cache", container="/y"),
        ]

        paths = await resolver.resolve_all(source_server, volumes)

        assert paths == ["/a", "/var/lib/docker/volumes/cache/_data"]

    async def test_missing_paths(self, executor, source_server):
        executor.respond("test -e /gone", stdout="missing\n")
        executor.respond("test -e /here", stdout="exists\n")
        resolver = VolumeResolver(executor)

        missing = await resolver.missing_paths(source_server, ["/here", "/gone"])

        assert missing == ["/gone"]
        assert all(c.startswith("sudo test -e") for c in executor.ran("test -e"))

    async def test_ensure_named_volume_and_directory(self, executor, target_server):
        resolver = VolumeResolver(executor)

        await resolver.ensure_named_volume(target_server, "web2_vol_0")
        await resolver.ensure_directory(target_server, "/srv/data")

        assert executor.ran("docker volume create web2_vol_0")
        assert executor.ran("sudo mkdir -p /srv/data")


class TestTargetVolumes:
    """Test target identities for migrated volumes."""

    def test_named_volumes_get_new_identity(self):
        volumes = [
            VolumeMapping(host="/data", container="/app/data"),
            VolumeMapping(host="pgdata", container="/var/lib/postgresql/data"),
        ]

        targets = VolumeResolver.target_volumes(volumes, "web2")

        assert targets[0] == volumes[0]
        assert targets[1].host == "web2_vol_1"
        assert targets[1].container == "/var/lib/postgresql/data"

    def test_target_volume_name(self):
        assert target_volume_name("api", 3) == "api_vol_3"
