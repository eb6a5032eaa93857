"""CLI 模块 - wagate 命令行入口。"""
