"""代理层：变换规划、数据分析与对话路由。"""
