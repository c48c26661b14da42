"""数据运维核心：单元格分类、内容指纹、操作执行、计划运行、草稿控制与文件解析。"""
