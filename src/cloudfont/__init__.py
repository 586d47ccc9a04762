"""
Cloud Font Agent — licensed fonts, cached and registered for one session.

Downloads purchased fonts into a hidden cache, registers them with the
system text renderer, and wipes every trace when the session ends.
"""

import os

__version__ = "0.1.0"
__author__ = "Cloud Font"

AGENT_HOME = os.environ.get("CLOUDFONT_HOME", "~/.cloud-font-agent")
