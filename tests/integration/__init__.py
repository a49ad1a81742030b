"""
集成测试（integration tests）

说明：
- 该目录下的测试启动本地临时 HTTP server，模拟报告 API（JSON:API）。
- 走真实的 HttpClient / ApiClient / PollEngine 链路，不依赖外网。
"""
