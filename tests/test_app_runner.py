import signal
from unittest.mock import MagicMock, patch

import pytest

from receipt_filer.app_runner import AppRunner, main
from receipt_filer.utils.config import ConfigurationError


@pytest.fixture
def mock_app_runner():
    yield AppRunner([])


def test_default_arguments(mock_app_runner):
    assert mock_app_runner.config_file == ".env"
    assert mock_app_runner.command == "collect"


def test_explicit_arguments():
    runner = AppRunner(["--env-file", "prod.env", "backfill-month"])
    assert runner.config_file == "prod.env"
    assert runner.command == "backfill-month"


def test_unknown_command_rejected():
    with pytest.raises(SystemExit):
        AppRunner(["file-everything"])


@patch("receipt_filer.app_runner.signal.signal")
def test_setup_signal_handlers(mock_signal, mock_app_runner):
    mock_app_runner.setup_signal_handlers()

    assert mock_signal.call_count == 2
    mock_signal.assert_any_call(signal.SIGINT, mock_app_runner._signal_handler)
    mock_signal.assert_any_call(signal.SIGTERM, mock_app_runner._signal_handler)


def test_signal_handler_raises_keyboard_interrupt():
    with pytest.raises(KeyboardInterrupt):
        AppRunner._signal_handler(signal.SIGINT, None)


@patch("receipt_filer.app_runner.Path")
def test_ensure_config_exists_when_file_present(mock_path, mock_app_runner):
    mock_path.return_value.exists.return_value = True

    with patch.object(mock_app_runner, "_handle_missing_config_interactive") as mock_interactive, \
         patch.object(mock_app_runner, "_handle_missing_config_non_interactive") as mock_non_interactive:

        mock_app_runner.ensure_config_exists()

        mock_interactive.assert_not_called()
        mock_non_interactive.assert_not_called()


@patch("receipt_filer.app_runner.Path")
@patch("sys.stdin.isatty", return_value=True)
def test_ensure_config_exists_interactive(mock_isatty, mock_path, mock_app_runner):
    def path_side_effect(arg):
        mock = MagicMock()
        mock.exists.return_value = arg == ".env.example"
        return mock

    mock_path.side_effect = path_side_effect

    with patch.object(mock_app_runner, "_handle_missing_config_interactive") as mock_interactive, \
         patch.object(mock_app_runner, "_handle_missing_config_non_interactive") as mock_non_interactive:

        mock_app_runner.ensure_config_exists()

        mock_interactive.assert_called_once()
        mock_non_interactive.assert_not_called()


@patch("receipt_filer.app_runner.Path")
@patch("sys.stdin.isatty", return_value=False)
def test_ensure_config_exists_non_interactive(mock_isatty, mock_path, mock_app_runner):
    mock_path.return_value.exists.return_value = False

    with pytest.raises(SystemExit) as exc_info:
        mock_app_runner.ensure_config_exists()

    assert exc_info.value.code == 1


@patch("receipt_filer.app_runner.os.chmod")
@patch("receipt_filer.app_runner.shutil.copy")
@patch("builtins.input", return_value="y")
def test_interactive_copies_template(mock_input, mock_copy, mock_chmod, mock_app_runner):
    with pytest.raises(SystemExit) as exc_info:
        mock_app_runner._handle_missing_config_interactive()

    assert exc_info.value.code == 0
    mock_copy.assert_called_once_with(".env.example", ".env")
    mock_chmod.assert_called_once_with(".env", 0o600)


@patch("builtins.input", return_value="n")
def test_interactive_declined(mock_input, mock_app_runner):
    with pytest.raises(SystemExit) as exc_info:
        mock_app_runner._handle_missing_config_interactive()
    assert exc_info.value.code == 1


@patch("receipt_filer.app_runner.check_default_credentials", return_value=["Gmail account uses default app password"])
@patch("receipt_filer.app_runner.Config")
def test_validate_config_rejects_defaults(mock_config, mock_check, mock_app_runner, capsys):
    with pytest.raises(SystemExit) as exc_info:
        mock_app_runner.validate_config()

    assert exc_info.value.code == 1
    assert "default app password" in capsys.readouterr().out


@patch("receipt_filer.app_runner.check_default_credentials", return_value=[])
@patch("receipt_filer.app_runner.Config")
def test_validate_config_reports_invalid_settings(mock_config, mock_check, mock_app_runner, capsys):
    mock_config.return_value.validate.side_effect = ConfigurationError(["PAGE_SIZE must be positive"])

    with pytest.raises(SystemExit):
        mock_app_runner.validate_config()

    assert "PAGE_SIZE must be positive" in capsys.readouterr().out


@patch("receipt_filer.app_runner.check_default_credentials", return_value=[])
@patch("receipt_filer.app_runner.Config")
def test_validate_config_passes(mock_config, mock_check, mock_app_runner):
    mock_app_runner.validate_config()
    mock_config.return_value.validate.assert_called_once()


@patch("receipt_filer.app_runner.ReceiptFilerPipeline")
def test_start_pipeline_runs_command(mock_pipeline):
    runner = AppRunner(["--env-file", "prod.env", "reset-processed"])
    runner.start_pipeline()
    mock_pipeline.assert_called_once_with("prod.env")
    mock_pipeline.return_value.run.assert_called_once_with("reset-processed")


def test_run_order(mock_app_runner):
    calls = []
    for name in ("setup_signal_handlers", "print_banner", "ensure_config_exists",
                 "validate_config", "start_pipeline"):
        setattr(mock_app_runner, name, lambda name=name: calls.append(name))

    mock_app_runner.run()

    assert calls == [
        "setup_signal_handlers", "print_banner", "ensure_config_exists",
        "validate_config", "start_pipeline",
    ]


@patch("receipt_filer.app_runner.AppRunner")
def test_main_entry_point(mock_runner):
    main()
    mock_runner.return_value.run.assert_called_once()
