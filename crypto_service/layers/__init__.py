"""
数据流分层
  Acquisition   : REST 行情价格拉取
  Market Stream : WebSocket K 线订阅
  Preferences   : 偏好设置存储（Redis → MongoDB → 文件）
  Processing    : K 线与交易对符号标准化
  Charts        : 模拟图表序列生成
"""
