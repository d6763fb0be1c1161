"""PostWise: 新闻抓取、原稿生成与成效追踪."""

__version__ = "0.1.0"
