from pytest_bdd import scenarios, given, when, parsers
from leadrelay.cli.main import cli

scenarios("features/reminders.feature")


def _summary(sent=0, dead_leads=0):
    return {
        'sent': sent, 'failed': 0, 'opener_failed': 0, 'already_sent': 0,
        'not_eligible': 0, 'no_lead': 0, 'error': 0, 'dead_leads': dead_leads,
    }


@given(parsers.parse("{count:d} contacts are due a reminder"))
def contacts_due(mock_reminders, count):
    mock_reminders.run_reminders.return_value = _summary(sent=count)


@given(parsers.parse("{count:d} contact has gone silent past every reminder"))
def contact_silent(mock_reminders, count):
    mock_reminders.run_reminders.return_value = _summary(dead_leads=count)


@when("the operator runs reminders")
def run_reminders(runner, context):
    context["result"] = runner.invoke(cli, ["reminders"])
