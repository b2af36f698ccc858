def pytest_sessionstart(session):
    import pkgutil

    import relay_trading_bot

    kids = [m.name for m in pkgutil.iter_modules(relay_trading_bot.__path__)]
    print("\n[pytest diag] relay_trading_bot.__file__ =", getattr(relay_trading_bot, "__file__", "<no file>"))
    print("[pytest diag] children under package    =", kids)
