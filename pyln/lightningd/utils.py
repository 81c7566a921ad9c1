import ephemeral_port_reserve  # type: ignore
import os
import threading
import time


def env(name, default=None):
    """Access to environment variables

    Allows access to environment variables, falling back to a default
    value. Empty strings count as unset, so `FOO= pytest` behaves like
    not setting `FOO` at all.

    """
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value


TEST_NETWORK = 'regtest'
TEST_DEBUG = env("TEST_DEBUG", "0") == "1"
SLOW_MACHINE = env("SLOW_MACHINE", "0") == "1"
TIMEOUT = int(env("TIMEOUT", 180 if SLOW_MACHINE else 60))
POLL_INTERVAL = 0.1
GRACE_TIMEOUT = 10


def wait_for(success, timeout=TIMEOUT, interval=0.25):
    """Call `success` until it returns something truthy.

    Raises `ValueError` if `timeout` seconds pass first.
    """
    start_time = time.monotonic()
    while not success():
        time_left = start_time + timeout - time.monotonic()
        if time_left <= 0:
            raise ValueError("Timeout while waiting for {}".format(success))
        time.sleep(min(interval, time_left))


def write_config(filename, opts):
    """Write `opts` as a lightningd config file.

    Options with a `None` value are flags and get written without a
    value, list values are repeated once per entry.
    """
    with open(filename, 'w') as f:
        for k, v in opts.items():
            if v is None:
                f.write("{}\n".format(k))
            elif isinstance(v, list):
                for i in v:
                    f.write("{}={}\n".format(k, i))
            else:
                f.write("{}={}\n".format(k, v))


unused_port_lock = threading.Lock()
unused_port_set = set()


def reserve_unused_port():
    """Get an unused port: avoids handing out the same port unless it's been
    returned"""
    with unused_port_lock:
        while True:
            port = ephemeral_port_reserve.reserve()
            if port not in unused_port_set:
                break
        unused_port_set.add(port)

    return port


def drop_unused_port(port):
    with unused_port_lock:
        unused_port_set.discard(port)
