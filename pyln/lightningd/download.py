"""Fetch, verify and unpack Core Lightning release archives.

The cache is keyed by version and laid out as
`<cache>/<version>/usr/bin/lightningd`. A version directory only appears
once its archive has been verified and fully extracted, and is never
touched again afterwards.
"""
from contextlib import closing
from pathlib import Path
from pyln.lightningd.errors import DownloadError
from pyln.lightningd.utils import env
from urllib.error import URLError
from urllib.request import urlopen

import argparse
import hashlib
import io
import logging
import os
import shutil
import sys
import tarfile
import tempfile
import threading

VERSIONS = ["v23.05", "v23.05.2"]
DEFAULT_VERSION = "v23.05.2"
DEFAULT_ENDPOINT = "https://github.com/ElementsProject/lightning/releases/download"

_fetch_lock = threading.Lock()


def pinned_version():
    return env("LIGHTNINGD_VERSION", DEFAULT_VERSION)


def cache_dir():
    default = os.path.join(os.path.expanduser("~"), ".cache", "pyln-lightningd")
    return Path(env("LIGHTNINGD_CACHE_DIR", default))


def downloaded_exe_path(version=None):
    """Where the executable for `version` lives once it's been fetched.

    This is a pure path computation, the file may not exist yet.
    """
    if version is None:
        version = pinned_version()
    return cache_dir() / version / "usr" / "bin" / "lightningd"


def ubuntu_version(os_release="/etc/os-release"):
    """Return `(major, minor)` of the running Ubuntu release."""
    try:
        with open(os_release, "r") as f:
            lines = f.readlines()
    except OSError as e:
        raise DownloadError("Cannot detect the OS release from {}: {}".format(os_release, e))

    fields = {}
    for line in lines:
        if "=" not in line:
            continue
        k, v = line.rstrip().split("=", 1)
        fields[k] = v.strip('"')

    if fields.get("ID") != "ubuntu" or "VERSION_ID" not in fields:
        raise DownloadError(
            "Release archives are only published for Ubuntu, found {}".format(
                fields.get("ID", "unknown"))
        )
    major, minor = fields["VERSION_ID"].split(".")[:2]
    return int(major), int(minor)


def download_filename(version, os_release="/etc/os-release"):
    major, minor = ubuntu_version(os_release)
    return "clightning-{}-Ubuntu-{}.{:0>2}.tar.xz".format(version, major, minor)


def _download_bytes(url, timeout=60):
    logging.info("Downloading {}".format(url))
    try:
        with closing(urlopen(url, timeout=timeout)) as fp:
            return fp.read()
    except (URLError, OSError) as e:
        raise DownloadError("Cannot reach url {}: {}".format(url, e))


def expected_sha256(version, filename, endpoint):
    """Look up the checksum of `filename` in the release's SHA256SUMS."""
    sums_file = env("LIGHTNINGD_SHA256SUMS_FILE")
    if sums_file is not None:
        try:
            with open(sums_file, "r") as f:
                sums = f.read()
        except OSError as e:
            raise DownloadError(
                "Cannot read {} specified with LIGHTNINGD_SHA256SUMS_FILE: {}".format(sums_file, e)
            )
    else:
        sums_url = "{}/{}/SHA256SUMS".format(endpoint, version)
        sums = _download_bytes(sums_url).decode("utf-8")

    for line in sums.splitlines():
        tokens = line.split()
        if len(tokens) == 2 and tokens[1].lstrip("*") == filename:
            return tokens[0].lower()

    raise DownloadError("Couldn't find hash for {} in SHA256SUMS:\n{}".format(filename, sums))


def _read_tarball(version, filename, endpoint):
    """Returns `(origin, bytes)` of the release archive."""
    path = env("LIGHTNINGD_TARBALL_FILE")
    if path is not None:
        try:
            with open(path, "rb") as f:
                return path, f.read()
        except OSError as e:
            raise DownloadError(
                "Cannot find {} specified with env var LIGHTNINGD_TARBALL_FILE: {}".format(path, e)
            )

    url = "{}/{}/{}".format(endpoint, version, filename)
    return url, _download_bytes(url)


def _extract(tarball, dest, compression):
    with tarfile.open(fileobj=io.BytesIO(tarball), mode="r:{}".format(compression)) as ft:
        if hasattr(tarfile, "data_filter"):
            ft.extractall(path=dest, filter="data")
        else:
            ft.extractall(path=dest)


def fetch(version=None, os_release="/etc/os-release"):
    """Make sure the `lightningd` for `version` is in the cache.

    Returns the path of the executable. Nothing is downloaded if the
    cache already holds it.
    """
    if version is None:
        version = pinned_version()
    exe = downloaded_exe_path(version)

    with _fetch_lock:
        if exe.exists():
            logging.debug("Using cached {}".format(exe))
            return exe

        endpoint = env("LIGHTNINGD_DOWNLOAD_ENDPOINT", DEFAULT_ENDPOINT).rstrip("/")
        filename = download_filename(version, os_release)
        expected = expected_sha256(version, filename, endpoint)
        origin, tarball = _read_tarball(version, filename, endpoint)

        actual = hashlib.sha256(tarball).hexdigest()
        if actual != expected:
            raise DownloadError(
                "Expected hash of {} is not matching: expected {}, got {}".format(
                    origin, expected, actual)
            )
        logging.info("Verified {} (sha256 {})".format(origin, actual))

        if filename.endswith(".tar.xz"):
            compression = "xz"
        elif filename.endswith(".tar.gz"):
            compression = "gz"
        else:
            raise DownloadError("Don't know how to unpack {}".format(filename))

        version_dir = cache_dir() / version
        version_dir.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".{}-".format(version), dir=str(version_dir.parent)))
        try:
            try:
                _extract(tarball, staging, compression)
            except (tarfile.TarError, OSError) as e:
                raise DownloadError("Cannot extract {}: {}".format(origin, e))
            if not (staging / "usr" / "bin" / "lightningd").exists():
                raise DownloadError("{} does not contain usr/bin/lightningd".format(origin))
            # Leftovers of an interrupted run, without an executable.
            if version_dir.exists():
                shutil.rmtree(str(version_dir))
            os.replace(str(staging), str(version_dir))
        finally:
            if staging.exists():
                shutil.rmtree(str(staging))

    logging.info("lightningd {} available at {}".format(version, exe))
    return exe


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Download and verify a Core Lightning release for tests"
    )
    parser.add_argument("--version", default=pinned_version(), choices=VERSIONS,
                        help="Release to fetch (default: %(default)s)")
    parser.add_argument("--cache-dir", default=None,
                        help="Cache root, overrides LIGHTNINGD_CACHE_DIR")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        stream=sys.stderr)
    if args.cache_dir is not None:
        os.environ["LIGHTNINGD_CACHE_DIR"] = args.cache_dir

    try:
        exe = fetch(args.version)
    except DownloadError as e:
        logging.error(str(e))
        return 1
    print(exe)
    return 0


if __name__ == "__main__":
    sys.exit(main())
