from tracker.main import run


def test_validate_command(capsys):
    assert run(['validate', '21', '19']) == 0
    output = capsys.readouterr().out
    assert "Score 21-19: VALID" in output
    assert "confidence: 100" in output


def test_validate_command_reports_errors(capsys):
    assert run(['validate', '21', '20']) == 1
    assert "Winner must win by at least 2 points" in capsys.readouterr().out


def test_init_and_resync_commands(database_url, capsys):
    assert run(['--database-url', database_url, 'init']) == 0
    assert run(['--database-url', database_url, 'resync', 'alice']) == 0
    assert "'games_played': 0" in capsys.readouterr().out

    assert run(['--database-url', database_url, 'check', 'alice']) == 0
    assert "Stats are in sync" in capsys.readouterr().out

    assert run(['--database-url', database_url, 'resync-all']) == 0
    assert "Synced 0/0 players" in capsys.readouterr().out


def test_audit_command_for_missing_match(database_url, capsys):
    assert run(['--database-url', database_url, 'audit', '42']) == 1
    assert "Match not found" in capsys.readouterr().out


def test_leaderboard_and_history_commands(database_url, capsys):
    assert run(['--database-url', database_url, 'resync', 'bob']) == 0
    assert run(['--database-url', database_url, 'resync', 'alice']) == 0
    capsys.readouterr()

    assert run(['--database-url', database_url, 'leaderboard', '--limit', '1']) == 0
    output = capsys.readouterr().out
    assert "1. alice: 0W-0L" in output
    assert "bob" not in output

    assert run(['--database-url', database_url, 'history', 'alice']) == 0
    output = capsys.readouterr().out
    assert "Player alice: 0 matches, risk low" in output
