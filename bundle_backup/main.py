#!/usr/bin/env python3
"""
Multi-provider git repository backup to timestamped bundle files

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

import argparse
import logging
import os
import sys
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.table import Table
from rich_argparse import ArgumentDefaultsRichHelpFormatter

from .azure_devops_manager import AzureDevOpsLister
from .base import RepositoryLister
from .bitbucket_manager import BitbucketLister
from .bundle_store import BundleStore, robust_rmtree
from .errors import ConfigurationError
from .git import git_executable, run_git
from .gitea_manager import GiteaLister
from .github_manager import GitHubLister
from .gitlab_manager import DEFAULT_MIN_ACCESS_LEVEL, GitLabLister
from .http_client import build_session, request_timeout
from .notify import RunSummary, WebhookNotifier
from .orchestrator import ProviderOrchestrator
from .sourcehut_manager import SourcehutLister
from .token_discovery import (
    get_azure_devops_credentials,
    get_bitbucket_credentials,
    get_env_or_file,
    get_gitea_token,
    get_github_token,
    get_gitlab_token,
    get_sourcehut_token,
)
from .worker import WORKING_DIR_NAME, BackupWorker, DiffMode

DEFAULT_RETAIN = 2
PLATFORMS = ("github", "gitlab", "bitbucket", "gitea", "azuredevops", "sourcehut")
PROVIDER_PREFIXES = ("GITHUB", "GITLAB", "BITBUCKET", "GITEA", "AZURE_DEVOPS", "SOURCEHUT")


class InterceptHandler(logging.Handler):
    """Forward standard logging records (libraries, default loggers) to loguru"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(verbose: bool = False, log_file: str = "repo-bundle-backup.log"):
    """Setup console and file logging with loguru"""

    logger.remove()
    logger.configure(extra={"provider": "-"})

    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)
    log_file_path = log_dir / log_file

    log_level = "DEBUG" if verbose else "INFO"

    console_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{extra[provider]: <9}</cyan> | "
        "<level>{message}</level>"
    )
    logger.add(sys.stdout, format=console_format, level=log_level, colorize=True)

    file_format = (
        "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[provider]} | "
        "{name}:{function}:{line} | {message}"
    )
    logger.add(
        log_file_path,
        format=file_format,
        level=log_level,
        rotation="10 MB",
        retention="30 days",
        compression="zip",
        encoding="utf-8",
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=log_level, force=True)

    logger.info("[CONFIG] Logging configured")
    logger.debug(f"Log file: {log_file_path}")

    return logger


def get_env_default(env_var: str, fallback=None):
    """Get value from environment or .env file"""
    return os.getenv(env_var, fallback)


def env_int(env_var: str, default: int) -> int:
    """Integer setting; unparsable values fall back to the default"""
    value = os.getenv(env_var, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"[CONFIG] {env_var}={value!r} is not an integer, using {default}")
        return default


def env_true(env_var: str) -> bool:
    return os.getenv(env_var, "").strip().lower() in ("1", "true", "yes", "on")


def parse_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_interval(value: Optional[str]) -> Optional[int]:
    """
    Seconds between runs from "6" or "6h" (hours) or "30m" (minutes).
    Returns None when unset.
    """
    if value is None or not str(value).strip():
        return None
    text = str(value).strip().lower()
    unit = 3600
    if text.endswith("h"):
        text = text[:-1]
    elif text.endswith("m"):
        text, unit = text[:-1], 60
    try:
        amount = int(text)
    except ValueError:
        raise ConfigurationError(f"invalid backup interval {value!r}") from None
    if amount <= 0:
        raise ConfigurationError(f"backup interval must be positive, got {value!r}")
    return amount * unit


@dataclass
class ProviderConfig:
    lister: RepositoryLister
    diff_mode: DiffMode = DiffMode.CLONE
    retain: int = DEFAULT_RETAIN
    workers: Optional[int] = None

    @property
    def name(self) -> str:
        return self.lister.provider_name


def provider_settings(
    prefix: str,
    compare: Optional[str] = None,
    retain: Optional[int] = None,
    workers: Optional[int] = None,
) -> dict:
    """<PREFIX>_COMPARE / _BACKUPS / _WORKERS, CLI overrides first"""
    diff_mode = DiffMode.parse(compare or os.getenv(f"{prefix}_COMPARE"))

    if retain is None:
        retain = env_int(f"{prefix}_BACKUPS", DEFAULT_RETAIN)
    if retain < 0:
        logger.warning(f"[CONFIG] {prefix}_BACKUPS must be >= 0, using {DEFAULT_RETAIN}")
        retain = DEFAULT_RETAIN

    if workers is None:
        workers = env_int(f"{prefix}_WORKERS", 0) or None

    return {"diff_mode": diff_mode, "retain": retain, "workers": workers}


def build_provider_configs(
    platforms: Optional[List[str]] = None,
    compare: Optional[str] = None,
    retain: Optional[int] = None,
    workers: Optional[int] = None,
) -> List[ProviderConfig]:
    """Listers for every provider with credentials in the environment"""
    wanted = set(platforms or PLATFORMS)
    timeout = request_timeout()
    configs = []

    if "github" in wanted:
        token = get_github_token()
        if token:
            lister = GitHubLister(
                token=token,
                api_url=os.getenv("GITHUB_APIURL") or None,
                orgs=parse_list(os.getenv("GITHUB_ORGS")),
                skip_user_repos=env_true("GITHUB_SKIP_USER_REPOS"),
                request_timeout=timeout,
            )
            configs.append(
                ProviderConfig(lister, **provider_settings("GITHUB", compare, retain, workers))
            )
            logger.info("[CONFIG] GitHub configured")

    if "gitlab" in wanted:
        gitlab_url = os.getenv("GITLAB_APIURL") or None
        token = get_gitlab_token(gitlab_url or "https://gitlab.com")
        if token:
            lister = GitLabLister(
                token=token,
                url=gitlab_url,
                min_access_level=env_int(
                    "GITLAB_PROJECT_MIN_ACCESS_LEVEL", DEFAULT_MIN_ACCESS_LEVEL
                ),
                request_timeout=timeout,
                session=build_session(),
            )
            configs.append(
                ProviderConfig(lister, **provider_settings("GITLAB", compare, retain, workers))
            )
            logger.info("[CONFIG] GitLab configured")

    if "bitbucket" in wanted:
        user, api_token = get_bitbucket_credentials()
        if user and api_token:
            lister = BitbucketLister(
                user=user,
                api_token=api_token,
                email=get_env_or_file("BITBUCKET_EMAIL"),
                api_url=os.getenv("BITBUCKET_APIURL") or None,
                workspaces=parse_list(os.getenv("BITBUCKET_WORKSPACES")),
                request_timeout=timeout,
            )
            configs.append(
                ProviderConfig(
                    lister, **provider_settings("BITBUCKET", compare, retain, workers)
                )
            )
            logger.info("[CONFIG] Bitbucket configured")
        elif user or api_token:
            raise ConfigurationError(
                "Bitbucket needs both BITBUCKET_USER and BITBUCKET_API_TOKEN"
            )

    if "gitea" in wanted:
        token = get_gitea_token()
        api_url = os.getenv("GITEA_APIURL")
        if token and api_url:
            lister = GiteaLister(
                api_url=api_url,
                token=token,
                orgs=parse_list(os.getenv("GITEA_ORGS")),
                request_timeout=timeout,
            )
            configs.append(
                ProviderConfig(lister, **provider_settings("GITEA", compare, retain, workers))
            )
            logger.info("[CONFIG] Gitea configured")
        elif token or api_url:
            raise ConfigurationError("Gitea needs both GITEA_APIURL and GITEA_TOKEN")

    if "azuredevops" in wanted:
        user, pat = get_azure_devops_credentials()
        orgs = parse_list(os.getenv("AZURE_DEVOPS_ORGS"))
        if user and pat:
            if not orgs:
                raise ConfigurationError("Azure DevOps needs AZURE_DEVOPS_ORGS")
            lister = AzureDevOpsLister(
                user=user, pat=pat, orgs=orgs, request_timeout=timeout
            )
            configs.append(
                ProviderConfig(
                    lister, **provider_settings("AZURE_DEVOPS", compare, retain, workers)
                )
            )
            logger.info("[CONFIG] Azure DevOps configured")
        elif user or pat:
            raise ConfigurationError(
                "Azure DevOps needs both AZURE_DEVOPS_USERNAME and AZURE_DEVOPS_PAT"
            )

    if "sourcehut" in wanted:
        token = get_sourcehut_token()
        if token:
            lister = SourcehutLister(
                token=token,
                api_url=os.getenv("SOURCEHUT_APIURL") or None,
                request_timeout=timeout,
            )
            configs.append(
                ProviderConfig(
                    lister, **provider_settings("SOURCEHUT", compare, retain, workers)
                )
            )
            logger.info("[CONFIG] Sourcehut configured")

    return configs


def unsupported_settings() -> List[str]:
    """Warnings for environment variables that are recognised but ignored"""
    warnings = []
    if os.getenv("GIT_BACKUP_CRON", "").strip():
        warnings.append(
            "GIT_BACKUP_CRON is not supported and is ignored; "
            "use GIT_BACKUP_INTERVAL to repeat backups"
        )
    return warnings


class RunCoordinator:
    def __init__(
        self,
        backup_root,
        providers: List[ProviderConfig],
        git_timeout: Optional[float] = None,
        notifier: Optional[WebhookNotifier] = None,
        progress: bool = True,
        clock=None,
    ):
        self.backup_root = Path(backup_root)
        self.providers = providers
        self.git_timeout = git_timeout or None
        self.notifier = notifier
        self.progress = progress
        self.clock = clock

    def backup_provider(self, config: ProviderConfig):
        provider_logger = logger.bind(provider=config.name)
        provider_logger.info(
            f"[START] Backing up {config.name} "
            f"(compare={config.diff_mode.value}, retain={config.retain})"
        )

        def worker_factory():
            return BackupWorker(
                self.backup_root,
                diff_mode=config.diff_mode,
                retain=config.retain,
                logger=provider_logger,
                git_timeout=self.git_timeout,
                clock=self.clock,
            )

        orchestrator = ProviderOrchestrator(
            config.lister,
            worker_factory,
            workers=config.workers,
            logger=provider_logger,
            progress=self.progress,
        )
        result = orchestrator.backup()

        for repo_result in result.results:
            if not repo_result.ok:
                provider_logger.error(
                    f"[FAIL] {repo_result.repo}: {repo_result.to_dict().get('error')}"
                )
        return result

    def run(self) -> RunSummary:
        logger.info("[START] Starting repository backup process...")
        self.backup_root.mkdir(parents=True, exist_ok=True)

        summary = RunSummary()
        try:
            for config in self.providers:
                summary.providers.append(self.backup_provider(config))
        finally:
            self.cleanup_working_dir()

        self.log_summary(summary)
        if self.notifier is not None:
            self.notifier.send(summary)
        return summary

    def cleanup_working_dir(self) -> None:
        working_root = self.backup_root / WORKING_DIR_NAME
        if working_root.exists():
            logger.info("[CLEANUP] Cleaning up working directory...")
            robust_rmtree(working_root, logger)

    def log_summary(self, summary: RunSummary) -> None:
        total = summary.succeeded + summary.failed
        logger.info("=" * 60)
        logger.info("[SUMMARY] BACKUP SUMMARY")
        logger.info("=" * 60)
        for result in summary.providers:
            if result.error is not None:
                logger.error(f"  - {result.provider}: {result.to_dict()['error']}")
            else:
                logger.info(
                    f"  - {result.provider}: {result.succeeded} ok "
                    f"({result.skipped} unchanged or empty), {result.failed} failed"
                )
        logger.info(f"[SUCCESS] Successful backups: {summary.succeeded}")
        logger.info(f"[SKIP] Unchanged or empty: {summary.skipped}")
        logger.info(f"[FAIL] Failed backups: {summary.failed}")
        logger.info(f"[TOTAL] Total repositories: {total}")

        if summary.has_failures:
            logger.error("[WARN] Some backups failed - check logs for details")
        else:
            logger.info("[COMPLETE] All repositories backed up successfully!")


def repository_dirs(backup_root: Path) -> List[Path]:
    """Directories under backup_root that hold bundle files"""
    dirs = set()
    for bundle in backup_root.rglob("*.bundle"):
        if WORKING_DIR_NAME in bundle.relative_to(backup_root).parts:
            continue
        dirs.add(bundle.parent)
    return sorted(dirs)


def list_backups(backup_root, console: Optional[Console] = None) -> int:
    """Print a table of local bundles; returns the number found"""
    backup_root = Path(backup_root)
    console = console or Console()

    table = Table(title=f"Bundles in {backup_root}")
    table.add_column("Repository", style="cyan")
    table.add_column("Bundle", style="green")
    table.add_column("Size (MB)", justify="right")
    table.add_column("Created (UTC)", style="yellow")

    count = 0
    if backup_root.is_dir():
        for repo_dir in repository_dirs(backup_root):
            for backup in BundleStore(repo_dir).list_backups():
                table.add_row(
                    str(repo_dir.relative_to(backup_root)),
                    Path(backup["path"]).name,
                    f"{backup['size_mb']:.2f}",
                    backup["created"],
                )
                count += 1

    if count:
        console.print(table)
    else:
        logger.info("No local backups found")
    return count


def verify_backup_integrity(backup_path) -> bool:
    """Run `git bundle verify` over a bundle file or every bundle under a directory"""
    logger.info(f"[VERIFY] Verifying backup integrity at: {backup_path}")

    backup_path = Path(backup_path)
    if backup_path.is_dir():
        bundles = sorted(
            b
            for b in backup_path.rglob("*.bundle")
            if WORKING_DIR_NAME not in b.relative_to(backup_path).parts
        )
    elif backup_path.is_file() and backup_path.suffix == ".bundle":
        bundles = [backup_path]
    else:
        logger.error(
            f"[VERIFY] Invalid backup path (not a directory or .bundle file): {backup_path}"
        )
        return False

    verified = 0
    failed = 0
    # git bundle verify needs a repository to check prerequisites against
    with tempfile.TemporaryDirectory(prefix="bundle-verify-") as scratch:
        run_git(["init", "--bare", "--quiet", scratch])
        for bundle in bundles:
            logger.debug(f"[VERIFY] Checking {bundle.name}...")
            result = run_git(["bundle", "verify", str(bundle.resolve())], cwd=scratch)
            if result.ok:
                verified += 1
                logger.debug(f"[VERIFY] {bundle.name}: Valid git bundle")
            else:
                failed += 1
                logger.error(
                    f"[VERIFY] {bundle.name}: Invalid git bundle - {result.error_text()}"
                )

    logger.info("=" * 50)
    logger.info(f"[VERIFY] Verification complete: {verified}/{len(bundles)} backups verified")
    if failed:
        logger.error(f"[VERIFY] {failed} backup(s) failed verification")
        return False
    logger.info("[VERIFY] All backups are valid")
    return True


def validate_configuration() -> bool:
    """Validate configuration and environment variables"""
    logger.info("[CONFIG] Validating configuration...")

    issues = []
    warnings = []

    if not get_env_or_file("GIT_BACKUP_DIR"):
        warnings.append("GIT_BACKUP_DIR not set (pass the backup path as an argument)")
    warnings.extend(unsupported_settings())

    if git_executable() is None:
        issues.append("git executable not found on PATH")

    try:
        request_timeout()
    except ConfigurationError as e:
        issues.append(str(e))
    try:
        parse_interval(os.getenv("GIT_BACKUP_INTERVAL"))
    except ConfigurationError as e:
        issues.append(str(e))

    for prefix in PROVIDER_PREFIXES:
        try:
            DiffMode.parse(os.getenv(f"{prefix}_COMPARE"))
        except ValueError as e:
            issues.append(f"{prefix}_COMPARE: {e}")

    try:
        providers = build_provider_configs()
    except (ConfigurationError, ValueError) as e:
        issues.append(str(e))
        providers = []

    for config in providers:
        logger.info(
            f"[CONFIG] {config.name} configured "
            f"(compare={config.diff_mode.value}, retain={config.retain})"
        )
    if not providers:
        issues.append("No providers configured")

    logger.info("=" * 50)
    for issue in issues:
        logger.error(f"[CONFIG] {issue}")
    for warning in warnings:
        logger.warning(f"[CONFIG] {warning}")

    if issues:
        logger.error("[CONFIG] Configuration validation failed")
        return False
    logger.info("[CONFIG] Configuration valid")
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repo-bundle-backup",
        description="[bold blue]Repository Bundle Backup[/bold blue] - Back up GitHub, "
        "GitLab, Bitbucket, Gitea, Azure DevOps and Sourcehut repositories as "
        "timestamped git bundles",
        epilog="""
[bold green]Examples:[/bold green]
  [dim]# Back up every configured provider[/dim]
  [yellow]%(prog)s[/yellow] [magenta]/path/to/backups[/magenta]

  [dim]# Only GitHub, skipping unchanged repositories[/dim]
  [yellow]%(prog)s[/yellow] [magenta]/backups[/magenta] [cyan]--platform[/cyan] github [cyan]--compare[/cyan] refs

  [dim]# Repeat every six hours[/dim]
  [yellow]%(prog)s[/yellow] [magenta]/backups[/magenta] [cyan]--interval[/cyan] 6h

  [dim]# List or verify existing bundles[/dim]
  [yellow]%(prog)s[/yellow] [magenta]/backups[/magenta] [cyan]--list[/cyan]
  [yellow]%(prog)s[/yellow] [cyan]--verify[/cyan] [magenta]/backups[/magenta]
        """,
        formatter_class=ArgumentDefaultsRichHelpFormatter,
    )

    parser.add_argument(
        "path",
        nargs="?",
        default=get_env_default("GIT_BACKUP_DIR"),
        help="Backup root directory (env: GIT_BACKUP_DIR)",
    )

    ops_group = parser.add_argument_group("Backup Operations")
    ops_group.add_argument("--list", action="store_true", help="List existing bundles")
    ops_group.add_argument(
        "--platform",
        metavar="PLATFORMS",
        help="Comma-separated list of platforms to use "
        "(github,gitlab,bitbucket,gitea,azuredevops,sourcehut). "
        "If not specified, uses all configured platforms",
    )
    ops_group.add_argument(
        "--compare",
        choices=[m.value for m in DiffMode],
        default=None,
        help="Change detection for all providers (env: <PROVIDER>_COMPARE)",
    )
    ops_group.add_argument(
        "--retain",
        type=int,
        default=None,
        metavar="N",
        help="Bundles to keep per repository, 0 keeps all (env: <PROVIDER>_BACKUPS)",
    )
    ops_group.add_argument(
        "--interval",
        default=get_env_default("GIT_BACKUP_INTERVAL"),
        metavar="INTERVAL",
        help="Repeat the backup every INTERVAL hours, e.g. 6, 6h or 30m "
        "(env: GIT_BACKUP_INTERVAL)",
    )

    diag_group = parser.add_argument_group("Diagnostic Commands")
    diag_group.add_argument(
        "--validate-config",
        action="store_true",
        help="Validate configuration and environment variables",
    )
    diag_group.add_argument(
        "--verify", metavar="PATH", help="Verify bundle integrity at specified path"
    )

    perf_group = parser.add_argument_group("Performance Options")
    perf_group.add_argument(
        "--workers",
        type=int,
        default=None,
        metavar="N",
        help="Parallel workers per provider (env: <PROVIDER>_WORKERS, "
        "default: 10 for GitHub, 5 otherwise)",
    )
    perf_group.add_argument(
        "--git-timeout",
        type=int,
        default=get_env_default("GIT_TIMEOUT", "0"),
        metavar="SECONDS",
        help="Timeout for each git command, 0 for none (env: GIT_TIMEOUT)",
    )
    perf_group.add_argument(
        "--no-progress", action="store_true", help="Disable progress bars"
    )

    log_group = parser.add_argument_group("Logging Options")
    log_group.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )
    log_group.add_argument(
        "--log-file",
        default=get_env_default("LOG_FILE", "repo-bundle-backup.log"),
        metavar="FILE",
        help="Log file name under logs/ (env: LOG_FILE)",
    )
    return parser


def main(argv: Optional[List[str]] = None):
    # Load environment variables first (before parsing args)
    load_dotenv()

    args = build_parser().parse_args(argv)

    setup_logging(verbose=args.verbose, log_file=args.log_file)

    if args.verify:
        sys.exit(0 if verify_backup_integrity(args.verify) else 1)

    if args.validate_config:
        sys.exit(0 if validate_configuration() else 1)

    backup_root = args.path or get_env_or_file("GIT_BACKUP_DIR")
    if not backup_root:
        logger.error(
            "Backup requires a path. Provide it as argument or set GIT_BACKUP_DIR "
            "environment variable."
        )
        sys.exit(1)

    if args.list:
        list_backups(backup_root)
        return

    if git_executable() is None:
        logger.error("[ERROR] git executable not found on PATH")
        sys.exit(1)

    platforms = None
    if args.platform:
        platforms = [p.strip().lower() for p in args.platform.split(",") if p.strip()]
        invalid = [p for p in platforms if p not in PLATFORMS]
        if invalid:
            logger.error(f"[ERROR] Invalid platform(s): {', '.join(invalid)}")
            logger.error(f"Valid platforms: {', '.join(PLATFORMS)}")
            sys.exit(1)

    if args.retain is not None and args.retain < 0:
        logger.error("[ERROR] --retain must be >= 0")
        sys.exit(1)

    for warning in unsupported_settings():
        logger.warning(f"[CONFIG] {warning}")

    try:
        interval = parse_interval(args.interval)
        providers = build_provider_configs(
            platforms, compare=args.compare, retain=args.retain, workers=args.workers
        )
        webhook_url = get_env_or_file("WEBHOOK_URL")
        notifier = (
            WebhookNotifier(
                webhook_url,
                format=os.getenv("WEBHOOK_FORMAT"),
                request_timeout=request_timeout(),
                logger=logger,
            )
            if webhook_url
            else None
        )
    except (ConfigurationError, ValueError) as e:
        logger.error(f"[CONFIG] {e}")
        sys.exit(1)

    if not providers:
        logger.error("[ERROR] No providers configured - set provider credentials first")
        sys.exit(1)

    coordinator = RunCoordinator(
        backup_root,
        providers,
        git_timeout=args.git_timeout,
        notifier=notifier,
        progress=not args.no_progress,
    )

    if interval is None:
        summary = coordinator.run()
        if summary.has_failures:
            sys.exit(1)
        return

    try:
        while True:
            coordinator.run()
            logger.info(f"[SCHEDULE] Next backup in {interval // 60} minutes")
            time.sleep(interval)
    except KeyboardInterrupt:
        logger.info("[SCHEDULE] Interrupted, exiting")


if __name__ == "__main__":
    main()
