from pyln.lightningd.errors import SpawnError

import logging
import os
import re
import subprocess
import sys


class TailableProc(object):
    """A monitorable process that we can start, stop and tail.

    Output never goes to the caller's console: stdout and stderr are
    redirected into `stdout.log` and `stderr.log` inside `outputDir`,
    which we read back incrementally. With `verbose` set the lines we
    read are echoed with a prefix.
    """

    def __init__(self, outputDir, verbose=False, prefix="lightningd"):
        self.logs = []
        self.err_logs = []
        self.env = os.environ.copy()
        self.proc = None
        self.outputDir = outputDir
        self.stdout_filename = os.path.join(outputDir, "stdout.log")
        self.stderr_filename = os.path.join(outputDir, "stderr.log")
        self.stdout_write = None
        self.stderr_write = None
        self.stdout_read = None
        self.stderr_read = None
        self.prefix = prefix

        # Should we be echoing lines we read from stdout?
        self.verbose = verbose

    @property
    def pid(self):
        return self.proc.pid if self.proc is not None else None

    def start(self, cmd_line, stdin=subprocess.DEVNULL):
        """Start the underlying process and start monitoring it."""
        logging.debug("Starting '%s'", " ".join(cmd_line))
        try:
            self.stdout_write = open(self.stdout_filename, "wt")
            self.stderr_write = open(self.stderr_filename, "wt")
            self.stdout_read = open(self.stdout_filename, "rt")
            self.stderr_read = open(self.stderr_filename, "rt")
        except OSError as e:
            self.close()
            raise SpawnError("Cannot create log files in {}: {}".format(self.outputDir, e))

        try:
            self.proc = subprocess.Popen(cmd_line,
                                         stdin=stdin,
                                         stdout=self.stdout_write,
                                         stderr=self.stderr_write,
                                         cwd=self.outputDir,
                                         env=self.env)
        except OSError as e:
            self.close()
            raise SpawnError("Error while executing {}: {}".format(cmd_line[0], e))

    def is_running(self):
        return self.proc is not None and self.proc.poll() is None

    @property
    def returncode(self):
        if self.proc is None:
            return None
        return self.proc.poll()

    def wait(self, timeout=None):
        """Wait for the process to exit for up to timeout seconds

        Returns the returncode of the process, None if the process did
        not return before the timeout triggers.
        """
        try:
            return self.proc.wait(timeout)
        except subprocess.TimeoutExpired:
            return None

    def terminate(self):
        if self.is_running():
            self.proc.terminate()

    def kill(self):
        """Kill process without giving it warning."""
        if self.is_running():
            self.proc.kill()

    def close(self):
        for f in (self.stdout_write, self.stderr_write, self.stdout_read, self.stderr_read):
            if f is not None:
                f.close()
        self.stdout_write = self.stderr_write = None
        self.stdout_read = self.stderr_read = None

    def logs_catchup(self):
        """Save the latest stdout / stderr contents; return true if we got anything.
        """
        if self.stdout_read is None:
            return False
        new_stdout = self.stdout_read.readlines()
        if self.verbose:
            for line in new_stdout:
                sys.stdout.write("{}: {}".format(self.prefix, line))
        self.logs += [l.rstrip() for l in new_stdout]
        new_stderr = self.stderr_read.readlines()
        if self.verbose:
            for line in new_stderr:
                sys.stderr.write("{}-stderr: {}".format(self.prefix, line))
        self.err_logs += [l.rstrip() for l in new_stderr]
        return len(new_stdout) > 0 or len(new_stderr) > 0

    def is_in_log(self, regex, start=0):
        """Look for `regex` in the logs."""

        self.logs_catchup()
        ex = re.compile(regex)
        for l in self.logs[start:]:
            if ex.search(l):
                logging.debug("Found '%s' in logs", regex)
                return l

        logging.debug("Did not find '%s' in logs", regex)
        return None

    def tail(self, lines=20):
        """The last `lines` lines of stdout and stderr."""
        self.logs_catchup()
        return self.logs[-lines:], self.err_logs[-lines:]
