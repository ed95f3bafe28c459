"""Loopback redirect flow: PKCE values, callback listener and orchestration."""

from oidccli.flow.browser import BrowserLauncher
from oidccli.flow.listener import ListenerState, RedirectListener
from oidccli.flow.orchestrator import FlowOrchestrator, redirect_uri_for
from oidccli.flow.pkce import PkceChallengeGenerator, PkceParameters, compute_code_challenge
from oidccli.flow.ports import LOOPBACK_HOST, PortAllocator
from oidccli.flow.reporter import ResultReporter

__all__ = [
    "BrowserLauncher",
    "FlowOrchestrator",
    "ListenerState",
    "LOOPBACK_HOST",
    "PkceChallengeGenerator",
    "PkceParameters",
    "PortAllocator",
    "RedirectListener",
    "ResultReporter",
    "compute_code_challenge",
    "redirect_uri_for",
]
