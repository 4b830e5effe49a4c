import nonebot


def pytest_configure(config):
    nonebot.init(driver="~none")
    nonebot.load_plugin("nonebot_plugin_dayzcheck")
