"""
Integration tests for depbundle.
Tests the reference archive client and complete manifest-to-install workflows.
"""

import json

import httpx
import pytest

from depbundle.evaluator import load_bundle
from depbundle.exceptions import MissingDependencies, RegistryError
from depbundle.installer import install, outdated, update
from depbundle.registry_clients import (
    ArchiveRegistryClient,
    compare_versions,
    create_registry_client,
    parse_package_file,
)
from depbundle.sources import SourceRegistrySpec

ARCHIVE_URL = "http://archive.test/packages/"
MIRROR_URL = "http://mirror.test/elpa/"

ARCHIVES = {
    "archive.test": {
        "dash": {"version": "2.0.0", "description": "List library", "requires": [["s"]]},
        "s": {"version": "1.12.0", "description": "String library"},
    },
    "mirror.test": {
        "dash": {"version": "1.5.0", "description": "List library (old)"},
    },
}


def archive_handler(request: httpx.Request) -> httpx.Response:
    packages = ARCHIVES.get(request.url.host)
    if packages is None:
        return httpx.Response(404)
    if request.url.path.endswith("archive-contents.json"):
        return httpx.Response(200, json={"packages": packages})
    if request.url.path.endswith(".tar"):
        return httpx.Response(200, content=b"archive-bytes")
    return httpx.Response(404)


def serving_index(body):
    """Transport whose archive serves ``body`` as its index."""

    def handler(request):
        if request.url.path.endswith("archive-contents.json"):
            return httpx.Response(200, json=body)
        return httpx.Response(200, content=b"archive-bytes")

    return httpx.MockTransport(handler)


@pytest.fixture
def transport():
    return httpx.MockTransport(archive_handler)


@pytest.fixture
def client(temp_dir, transport):
    with ArchiveRegistryClient(temp_dir / "packages", transport=transport) as registry:
        yield registry


def install_record(install_dir, name, version):
    package_dir = install_dir / f"{name}-{version}"
    package_dir.mkdir(parents=True)
    (package_dir / "package.json").write_text(
        json.dumps({"name": name, "version": version}), encoding="utf-8"
    )
    return package_dir


class TestArchiveRegistryClient:
    """Test the HTTP archive client against a mocked transport."""

    def test_best_version_first_across_sources(self, client):
        client.add_source(SourceRegistrySpec("mirror", MIRROR_URL))
        client.add_source(SourceRegistrySpec("archive", ARCHIVE_URL))
        client.refresh_index()

        available = client.find_available_packages("dash")

        assert [ref.version for ref in available] == ["2.0.0", "1.5.0"]
        assert available[0].source == "archive"
        assert available[0].url == "http://archive.test/packages/dash-2.0.0.tar"
        assert available[0].requires == (("s", None),)
        assert client.find_available_packages("nothing") == []

    def test_install_writes_package(self, client, temp_dir):
        client.add_source(SourceRegistrySpec("archive", ARCHIVE_URL))
        client.refresh_index()
        client.initialize()

        assert not client.is_installed("s")
        client.install(client.find_available_packages("s")[0])

        package_dir = temp_dir / "packages" / "s-1.12.0"
        assert (package_dir / "s-1.12.0.tar").read_bytes() == b"archive-bytes"
        record = json.loads((package_dir / "package.json").read_text(encoding="utf-8"))
        assert record["version"] == "1.12.0"
        assert client.is_installed("s")

    def test_initialize_reads_install_dir(self, temp_dir, transport):
        install_record(temp_dir / "packages", "dash", "1.0.0")
        install_record(temp_dir / "packages", "dash", "1.2.0")

        with ArchiveRegistryClient(temp_dir / "packages", transport=transport) as registry:
            registry.initialize()
            assert registry.is_installed("dash")
            assert not registry.is_installed("s")

    def test_upgrades(self, temp_dir, client):
        old_dir = install_record(temp_dir / "packages", "dash", "1.0.0")
        install_record(temp_dir / "packages", "s", "1.12.0")
        client.add_source(SourceRegistrySpec("archive", ARCHIVE_URL))

        upgrades = outdated(client)

        assert [(u.name, u.installed_version, u.available_version) for u in upgrades] == [
            ("dash", "1.0.0", "2.0.0")
        ]

        upgraded = update(None, client)

        assert [u.name for u in upgraded] == ["dash"]
        assert (temp_dir / "packages" / "dash-2.0.0" / "package.json").exists()
        assert not old_dir.exists()
        assert outdated(client) == []

    def test_missing_index_raises(self, client):
        client.add_source(SourceRegistrySpec("nowhere", "http://unknown.test/"))

        with pytest.raises(RegistryError, match="HTTP 404"):
            client.refresh_index()

    @pytest.mark.parametrize(
        "body",
        [
            {"packages": {"dash": {"description": "no version"}}},
            {"packages": {"dash": "2.0.0"}},
            {"packages": {"dash": {"version": "2.0.0", "requires": [[1]]}}},
            {"packages": {"dash": {"version": "2.0.0", "requires": "s"}}},
            {"packages": ["dash"]},
            ["dash"],
        ],
    )
    def test_malformed_index_raises(self, temp_dir, body):
        with ArchiveRegistryClient(
            temp_dir / "packages", transport=serving_index(body)
        ) as registry:
            registry.add_source(SourceRegistrySpec("archive", ARCHIVE_URL))

            with pytest.raises(RegistryError, match="Invalid index from archive"):
                registry.refresh_index()

    def test_unsafe_package_names_are_not_installed(self, tmp_path):
        install_dir = tmp_path / "a" / "pk"
        body = {"packages": {"../../escaped": {"version": "1"}, "ok": {"version": "../x"}}}

        with ArchiveRegistryClient(install_dir, transport=serving_index(body)) as registry:
            registry.add_source(SourceRegistrySpec("archive", ARCHIVE_URL))
            registry.refresh_index()

            for name in ("../../escaped", "ok"):
                with pytest.raises(RegistryError, match="unsafe package"):
                    registry.install(registry.find_available_packages(name)[0])

        assert not (tmp_path / "escaped-1").exists()
        assert not any(tmp_path.rglob("package.json"))

    def test_malformed_install_records_are_skipped(self, temp_dir, transport):
        install_record(temp_dir / "packages", "dash", "1.0.0")
        broken = temp_dir / "packages" / "broken"
        broken.mkdir()
        (broken / "package.json").write_text(json.dumps({"version": "1"}), encoding="utf-8")

        with ArchiveRegistryClient(temp_dir / "packages", transport=transport) as registry:
            registry.initialize()

            assert registry.is_installed("dash")

    def test_requires_context_manager(self, temp_dir):
        registry = ArchiveRegistryClient(temp_dir / "packages")
        registry.add_source(SourceRegistrySpec("archive", ARCHIVE_URL))

        with pytest.raises(RegistryError, match="not initialized"):
            registry.refresh_index()

    def test_create_registry_client_uses_project_root(self, temp_dir):
        registry = create_registry_client(temp_dir)
        assert registry.install_dir == temp_dir / ".depbundle" / "packages"

    def test_compare_versions(self):
        assert compare_versions("1.10", "1.9") == 1
        assert compare_versions("20130101.1200", "20121231") == 1
        assert compare_versions("2.0", "2.0.0") == 0
        assert compare_versions("abc", "abd") == -1


class TestPackageFiles:
    """Test reading package identity from TOML package files."""

    def test_package_table(self, temp_dir):
        path = temp_dir / "foo.toml"
        path.write_text(
            '[package]\nname = "foo"\nversion = "0.3.0"\ndescription = "Foo mode"\n\n'
            '[dependencies]\ndash = "2.0"\ns = { version = "1.12" }\nf = "*"\n',
            encoding="utf-8",
        )

        metadata = parse_package_file(path)

        assert (metadata.name, metadata.version, metadata.description) == (
            "foo",
            "0.3.0",
            "Foo mode",
        )
        assert metadata.requirements == (("dash", "2.0"), ("s", "1.12"), ("f", None))

    def test_project_table(self, temp_dir):
        path = temp_dir / "pyproject.toml"
        path.write_text(
            '[project]\nname = "bar"\nversion = "1.0"\ndescription = "Bar"\n'
            'dependencies = ["rich>=13", "click"]\n',
            encoding="utf-8",
        )

        metadata = parse_package_file(path)

        assert metadata.requirements == (("rich", ">=13"), ("click", None))

    def test_incomplete_package(self, temp_dir):
        path = temp_dir / "foo.toml"
        path.write_text('[package]\nname = "foo"\nversion = "1.0"\n', encoding="utf-8")

        with pytest.raises(RegistryError, match="description"):
            parse_package_file(path)

    def test_invalid_toml(self, temp_dir):
        path = temp_dir / "foo.toml"
        path.write_text("[package\nname = ", encoding="utf-8")

        with pytest.raises(RegistryError, match="Invalid TOML"):
            parse_package_file(path)

    def test_missing_file(self, temp_dir):
        with pytest.raises(RegistryError, match="does not exist"):
            parse_package_file(temp_dir / "nope.toml")


class TestEndToEnd:
    """Test manifest reading, evaluation and installation together."""

    def test_manifest_install(self, write_manifest, temp_dir, client):
        (temp_dir / "foo.toml").write_text(
            '[package]\nname = "foo"\nversion = "0.1.0"\ndescription = "Foo"\n\n'
            '[dependencies]\ns = "1.12"\n',
            encoding="utf-8",
        )
        path = write_manifest(
            '(source "archive" "http://archive.test/packages/")\n'
            '(package-file "foo.toml")\n'
            '(depends-on "dash")\n'
            '(development\n (depends-on "ghost"))\n'
        )

        bundle = load_bundle(path, client)

        assert [dep.name for dep in bundle.runtime_dependencies] == ["s", "dash"]
        with pytest.raises(MissingDependencies) as excinfo:
            install(bundle, client)

        assert [dep.name for dep in excinfo.value.dependencies] == ["ghost"]
        assert (temp_dir / "packages" / "dash-2.0.0").is_dir()
        assert (temp_dir / "packages" / "s-1.12.0").is_dir()

    def test_second_install_is_a_no_op(self, write_manifest, temp_dir, transport):
        path = write_manifest(
            '(source "archive" "http://archive.test/packages/")\n(depends-on "s")\n'
        )

        with ArchiveRegistryClient(temp_dir / "packages", transport=transport) as registry:
            install(load_bundle(path, registry), registry)

        requests = []

        def counting_handler(request):
            requests.append(request.url.path)
            return archive_handler(request)

        with ArchiveRegistryClient(
            temp_dir / "packages", transport=httpx.MockTransport(counting_handler)
        ) as registry:
            install(load_bundle(path, registry), registry)

        assert requests == ["/packages/archive-contents.json"]
