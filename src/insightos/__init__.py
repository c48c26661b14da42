"""InsightOS：带版本管理的表格数据运维引擎。"""

__version__ = "0.1.0"
