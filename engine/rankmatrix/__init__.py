"""広告・ASO 向け順位集計エンジン."""
