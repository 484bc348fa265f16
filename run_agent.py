# --------------------------------------------------------------------------------------
# CLI ENTRYPOINT
# --------------------------------------------------------------------------------------
# USAGE EXAMPLES:
#   python run_agent.py "How many artists are in the database?"
#   python run_agent.py "Tell me about Adam Smith"
#   python run_agent.py                     (interactive chat; exit/quit/bye to leave)
#
# FLAGS:
#   --sqlite-dir     : directory scanned for *.db / *.sqlite / *.sqlite3
#   --documents-dir  : directory scanned for *.txt
#   --log-level      : DEBUG | INFO | WARNING | ERROR
#
# EXIT CODES:
#   0 ok, 1 when no data source could be initialized.
# --------------------------------------------------------------------------------------
import argparse, logging, sys

from multisource_agent.errors import InitializationFailure
from multisource_agent.session import AgentSession

EXIT_WORDS = {"exit", "quit", "bye"}

def _repl(session: AgentSession) -> None:
    print("Multi-source agent ready. Ask about the music database, the economics documents,")
    print("or live data (weather, time, news). Type 'exit' to quit.\n")
    while True:
        try:
            line = input("You: ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break
        if not line:
            continue
        if line.lower() in EXIT_WORDS:
            print("Goodbye!")
            break
        print(f"\nAgent: {session.process_message(line)}\n")

def main():
    ap = argparse.ArgumentParser(description="Chat agent over a SQLite store, a text corpus and approved shell commands.")
    ap.add_argument("query", nargs="?", help="User input (omit for interactive mode)")
    ap.add_argument("--sqlite-dir", default=None, help="SQLite data directory (env SQLITE_DATA_DIR)")
    ap.add_argument("--documents-dir", default=None, help="Documents directory (env DOCUMENTS_DIR)")
    ap.add_argument("--log-level", default="INFO", help="Logging level")
    args = ap.parse_args()

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO),
                        format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    session = AgentSession(sqlite_dir=args.sqlite_dir, documents_dir=args.documents_dir)
    try:
        session.initialize()
    except InitializationFailure as e:
        print(f"Failed to start: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.query:
            print(session.process_message(args.query))
        else:
            _repl(session)
    finally:
        session.close()

if __name__ == "__main__":
    main()
