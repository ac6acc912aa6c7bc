# finder/cli.py
def main() -> int:
    """
    Console script entry point:
      finder = finder.cli:main
    Delegates to the root script so `python find_jobs.py` and `finder` behave the same.
    """
    import find_jobs
    return find_jobs.main()

if __name__ == "__main__":
    # When executed as `python -m finder.cli ...`
    raise SystemExit(main())
