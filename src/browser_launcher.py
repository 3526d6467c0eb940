"""Attach Selenium to an Edge instance running with remote debugging."""
import os
import re
import subprocess
import sys
import time

from selenium import webdriver
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.edge.options import Options

_WEBDRIVER_NOISE_RE = re.compile(
    r'\s*\n\s*from unknown error:.*'
    r'|\s*\n\s*\(Session info:.*'
    r'|\s*Stacktrace:\s*\n.*',
    re.DOTALL,
)

_EDGE_PATHS = {
    'win32': [
        r"C:\Program Files (x86)\Microsoft\Edge\Application\msedge.exe",
        r"C:\Program Files\Microsoft\Edge\Application\msedge.exe",
    ],
    'darwin': [
        "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
    ],
    'linux': [
        "/usr/bin/microsoft-edge",
        "/usr/bin/microsoft-edge-stable",
        "/usr/bin/microsoft-edge-beta",
    ],
}


def _short_err(exc):
    """Return a concise one-liner from a (possibly verbose) exception."""
    msg = _WEBDRIVER_NOISE_RE.sub('', str(exc)).strip()
    if msg.startswith('Message: '):
        msg = msg[len('Message: '):]
    return msg


class BrowserLauncher:
    """Connects to (and optionally starts) Edge with debugging enabled."""

    def __init__(self, debugging_port=9223):
        self.debugging_port = debugging_port
        self.driver = None
        self.edge_process = None

    def find_edge_executable(self):
        for path in _EDGE_PATHS.get(sys.platform, _EDGE_PATHS['linux']):
            if os.path.exists(path):
                return path
        return None

    def launch_edge_process(self):
        """Start Edge with the debugging port open on chess.com."""
        edge_path = self.find_edge_executable()
        if not edge_path:
            raise RuntimeError(
                "Could not find Edge executable. Start it yourself with "
                f"--remote-debugging-port={self.debugging_port}"
            )

        print(f"[Browser] Launching Edge with debugging on port {self.debugging_port}...")
        self.edge_process = subprocess.Popen([
            edge_path,
            f"--remote-debugging-port={self.debugging_port}",
            "--remote-debugging-address=127.0.0.1",
            "--no-first-run",
            "--no-default-browser-check",
            # Keep timers running when the window is covered or minimised.
            "--disable-background-timer-throttling",
            "--disable-backgrounding-occluded-windows",
            "--disable-renderer-backgrounding",
            "--disable-features=IntensiveWakeUpThrottling,CalculateNativeWinOcclusion",
            "https://www.chess.com/play",
        ])
        time.sleep(3)

    def connect_to_edge(self):
        """Connect Selenium to the already-running Edge instance.

        Switches to the first chess.com tab if there is one.
        """
        print(f"[Browser] Connecting to Edge on debugging port {self.debugging_port}...")

        edge_options = Options()
        edge_options.add_experimental_option("debuggerAddress", f"127.0.0.1:{self.debugging_port}")

        try:
            self.driver = webdriver.Edge(options=edge_options)
        except WebDriverException as e:
            print(f"[Browser] Failed to connect to Edge: {_short_err(e)}")
            print("[Browser] Make sure Edge is running with remote debugging enabled:")
            print(f"[Browser]   msedge --remote-debugging-port={self.debugging_port}")
            raise

        self.driver.set_script_timeout(5)
        # A dead browser otherwise leaves urllib3 retrying for about a minute.
        try:
            self.driver.command_executor.set_timeout(10)
        except AttributeError:
            pass

        # Page Visibility override: the page must keep running when the
        # window is minimised or covered.
        try:
            self.driver.execute_cdp_cmd('Emulation.setFocusEmulationEnabled', {'enabled': True})
            self.driver.execute_cdp_cmd(
                'Page.addScriptToEvaluateOnNewDocument',
                {
                    'source': (
                        'Object.defineProperty(document,"visibilityState",'
                        '{get:()=>"visible",configurable:true});'
                        'Object.defineProperty(document,"hidden",'
                        '{get:()=>false,configurable:true});'
                    )
                },
            )
        except WebDriverException as e:
            print(f"[Browser] ⚠ Could not install focus emulation: {_short_err(e)}")

        if self._switch_to_chesscom_tab():
            print(f"[Browser] ✓ Connected to chess.com tab: {self.driver.current_url}")
        else:
            print("[Browser] ⚠ No chess.com tab found. Please open chess.com in the browser.")
        return self.driver

    def _switch_to_chesscom_tab(self):
        for handle in self.driver.window_handles:
            self.driver.switch_to.window(handle)
            if 'chess.com' in (self.driver.current_url or ''):
                return True
        return False

    def is_session_alive(self):
        """Return True if the WebDriver session is still responsive."""
        if not self.driver:
            return False
        try:
            self.driver.title  # lightweight round-trip
            return True
        except WebDriverException:
            return False

    def close(self):
        """Drop the Selenium connection; stop Edge only if we started it."""
        if self.driver:
            try:
                self.driver.quit()
            except WebDriverException as e:
                print(f"[Browser] Error closing driver: {_short_err(e)}")
            self.driver = None

        if self.edge_process:
            self.edge_process.terminate()
            try:
                self.edge_process.wait(timeout=2)
            except subprocess.TimeoutExpired:
                self.edge_process.kill()
            self.edge_process = None
