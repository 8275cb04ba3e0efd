"""
Credential discovery for supported git hosting providers

Copyright 2025 HyperSec

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

import logging
import netrc
import os
import subprocess
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urlparse

import yaml

logger = logging.getLogger(__name__)


def get_env_or_file(env_var: str) -> Optional[str]:
    """
    Value of env_var, or the contents of the file named by <env_var>_FILE.

    The variable itself wins when both are set. Returns None when neither
    yields a non-empty value.
    """
    value = os.getenv(env_var)
    if value is not None:
        return value.strip() or None

    file_path = os.getenv(f"{env_var}_FILE", "").strip()
    if not file_path:
        return None

    try:
        return Path(file_path).read_text(encoding="utf-8").strip() or None
    except OSError as e:
        logger.warning(f"[TOKEN] Unable to read {env_var}_FILE ({file_path}): {e}")
        return None


def get_github_token() -> Optional[str]:
    """
    Discover GitHub token from standard locations.

    Priority:
    1. GITHUB_TOKEN (or GITHUB_TOKEN_FILE)
    2. GH_TOKEN environment variable
    3. gh CLI auth token (via `gh auth token` command)
    """
    token = get_env_or_file("GITHUB_TOKEN")
    if token:
        logger.debug("[TOKEN] GitHub token found in GITHUB_TOKEN")
        return token

    token = os.getenv("GH_TOKEN")
    if token:
        logger.debug("[TOKEN] GitHub token found in GH_TOKEN env var")
        return token.strip()

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0 and result.stdout.strip():
            logger.info("[TOKEN] GitHub token discovered from gh CLI")
            return result.stdout.strip()
    except (subprocess.TimeoutExpired, FileNotFoundError):
        pass

    return None


def get_gitlab_token(gitlab_url: str = "https://gitlab.com") -> Optional[str]:
    """
    Discover GitLab token from standard locations.

    Priority:
    1. GITLAB_TOKEN (or GITLAB_TOKEN_FILE)
    2. ~/.config/glab-cli/config.yml entry for the instance host
    """
    token = get_env_or_file("GITLAB_TOKEN")
    if token:
        logger.debug("[TOKEN] GitLab token found in GITLAB_TOKEN")
        return token

    config_paths = [
        Path(os.getenv("XDG_CONFIG_HOME", Path.home() / ".config"))
        / "glab-cli"
        / "config.yml",
        Path.home() / ".config" / "glab-cli" / "config.yml",
    ]
    hostname = urlparse(gitlab_url).hostname or "gitlab.com"

    for config_path in config_paths:
        if not config_path.exists():
            continue
        try:
            with open(config_path) as f:
                config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.debug(f"[TOKEN] Failed to read glab config: {e}")
            continue
        host_config = (config or {}).get("hosts", {}).get(hostname) or {}
        token = host_config.get("token")
        if token:
            logger.info(f"[TOKEN] GitLab token discovered from {config_path}")
            return token

    return None


def get_bitbucket_credentials() -> Tuple[Optional[str], Optional[str]]:
    """
    Discover Bitbucket credentials from standard locations.

    Priority:
    1. BITBUCKET_USER + BITBUCKET_API_TOKEN (each also readable from *_FILE)
    2. ~/.netrc entry for bitbucket.org

    Returns:
        Tuple of (username, api_token); either may be None
    """
    username = get_env_or_file("BITBUCKET_USER")
    api_token = get_env_or_file("BITBUCKET_API_TOKEN")
    if username and api_token:
        logger.debug("[TOKEN] Bitbucket credentials found in BITBUCKET_USER/API_TOKEN")
        return username, api_token
    if username or api_token:
        return username, api_token

    netrc_path = Path.home() / ".netrc"
    if netrc_path.exists():
        try:
            auth = netrc.netrc(str(netrc_path))
            for host in ["bitbucket.org", "api.bitbucket.org"]:
                creds = auth.authenticators(host)
                if creds:
                    login, _, password = creds
                    logger.info("[TOKEN] Bitbucket credentials discovered from .netrc")
                    return login, password
        except (OSError, netrc.NetrcParseError) as e:
            logger.debug(f"[TOKEN] Failed to read .netrc: {e}")

    return None, None


def get_gitea_token() -> Optional[str]:
    token = get_env_or_file("GITEA_TOKEN")
    if token:
        logger.debug("[TOKEN] Gitea token found in GITEA_TOKEN")
    return token


def get_azure_devops_credentials() -> Tuple[Optional[str], Optional[str]]:
    """AZURE_DEVOPS_USERNAME + AZURE_DEVOPS_PAT; either may be None"""
    username = get_env_or_file("AZURE_DEVOPS_USERNAME")
    pat = get_env_or_file("AZURE_DEVOPS_PAT")
    if username and pat:
        logger.debug("[TOKEN] Azure DevOps credentials found in AZURE_DEVOPS_USERNAME/PAT")
    return username, pat


def get_sourcehut_token() -> Optional[str]:
    token = get_env_or_file("SOURCEHUT_PAT")
    if token:
        logger.debug("[TOKEN] Sourcehut token found in SOURCEHUT_PAT")
    return token


def discover_all_tokens() -> dict:
    """
    Discover all available credentials from standard locations.

    Returns:
        Dictionary with discovered credentials
    """
    discovered = {}

    github_token = get_github_token()
    if github_token:
        discovered["github_token"] = github_token

    gitlab_token = get_gitlab_token(os.getenv("GITLAB_APIURL") or "https://gitlab.com")
    if gitlab_token:
        discovered["gitlab_token"] = gitlab_token

    bb_user, bb_token = get_bitbucket_credentials()
    if bb_user:
        discovered["bitbucket_user"] = bb_user
    if bb_token:
        discovered["bitbucket_api_token"] = bb_token

    gitea_token = get_gitea_token()
    if gitea_token:
        discovered["gitea_token"] = gitea_token

    azure_user, azure_pat = get_azure_devops_credentials()
    if azure_user:
        discovered["azure_devops_username"] = azure_user
    if azure_pat:
        discovered["azure_devops_pat"] = azure_pat

    sourcehut_token = get_sourcehut_token()
    if sourcehut_token:
        discovered["sourcehut_pat"] = sourcehut_token

    return discovered
