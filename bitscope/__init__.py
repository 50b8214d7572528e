"""bitscope - 组件版本仓库与工作区同步工具"""

__version__ = "0.1.0"
