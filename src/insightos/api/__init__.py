"""HTTP 接口。"""
