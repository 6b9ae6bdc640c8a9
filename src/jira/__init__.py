"""Jira integration."""

from src.jira.client import JiraClient, JiraError, RetryConfig

__all__ = ["JiraClient", "JiraError", "RetryConfig"]
