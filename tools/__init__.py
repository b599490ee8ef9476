# Tools package
