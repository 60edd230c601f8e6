"""
AnalyzeCommand — Check changed files against their intents
"""

from .base import BaseCommand, format_drift


class AnalyzeCommand(BaseCommand):
    """Runs drift analysis and reports findings or capture candidates."""

    def analyze(self, since=None, files=None, as_json: bool = False):
        result = self.mesh.analyze_changes(since=since, files=files or None)

        if as_json:
            self.print_json({
                "drifts": [d.to_dict() for d in result.drifts],
                "canCapture": result.can_capture,
                "filesAnalyzed": result.files_analyzed,
                "intentsChecked": result.intents_checked,
                "pendingConversations": [
                    {"id": p.id, "name": p.name, "messageCount": p.message_count,
                     "projectPath": p.project_path}
                    for p in result.pending_conversations or []
                ],
            })
            return result

        print(f"Analyzed {result.files_analyzed} file(s), checked {result.intents_checked} intent(s).")
        if result.drifts:
            print(f"\n{len(result.drifts)} drift(s) found:\n")
            for drift in result.drifts:
                print(format_drift(drift))
            print("\nResolve with: intentmesh resolve <id> {dismiss,false_positive,update_intent}")
        else:
            print("No drift detected.")

        if result.pending_conversations:
            print(f"\n{len(result.pending_conversations)} conversation(s) ready to capture:")
            for pending in result.pending_conversations:
                print(f"  {pending.id}  {pending.name or ''} ({pending.message_count} messages)")
            print("\nCapture with: intentmesh capture")
        elif not result.can_capture:
            print("\nCapture is blocked until open drifts are resolved.")
        return result


# =============================================================================
# Command Registration (Self-Registration Pattern)
# =============================================================================

COMMAND_NAME = 'analyze'


def register_parser(subparsers):
    p = subparsers.add_parser('analyze', help='Check changed files for intent drift')
    p.add_argument('files', nargs='*', help='Files to analyze (default: changed files)')
    p.add_argument('--since', help='Revision to compare against (default: HEAD)')
    p.add_argument('--json', action='store_true', help='Output JSON')
    return p


def handle(cli, args):
    return AnalyzeCommand(cli).analyze(since=args.since, files=args.files, as_json=args.json)
