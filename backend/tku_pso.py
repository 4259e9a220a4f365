import bisect
import logging
from collections import deque

import numpy as np

from utility_db import UtilityDatabase, bit_positions

log = logging.getLogger(__name__)

DEFAULT_POP_SIZE = 20
DEFAULT_ITERATIONS = 10000
DEFAULT_K = 1000
DEFAULT_AVG_ESTIMATE = True

# Setiap berapa iterasi std dievaluasi untuk diperketat
TIGHTEN_INTERVAL = 25


def iter_bits(bits):
    # Posisi bit yang aktif pada bit vector itemset, dari kecil ke besar
    while bits:
        low = bits & -bits
        yield low.bit_length() - 1
        bits ^= low


def lowest_bit(bits):
    return (bits & -bits).bit_length() - 1


def roulette_probabilities(weights):
    """Rentang probabilitas kumulatif untuk roulette wheel selection.

    Jika total bobot 0, semua posisi mendapat peluang yang sama.
    """
    weights = np.asarray(weights, dtype=float)
    total = weights.sum()
    if total <= 0:
        return np.arange(1, len(weights) + 1) / len(weights)
    return np.cumsum(weights) / total


def roulette_select(prob_range, rng):
    # Posisi pertama dengan rentang kumulatif >= angka acak
    pos = int(np.searchsorted(prob_range, rng.random(), side='left'))
    return min(pos, len(prob_range) - 1)


class Particle:
    def __init__(self, x=0, fitness=0):
        self.x = x              # Bit vector itemset
        self.fitness = fitness  # Utilitas itemset
        self.est_fitness = 0    # Estimasi utilitas dari pev-check

    def copy(self):
        return Particle(self.x, self.fitness)

    def __repr__(self):
        return f"Particle({bin(self.x)}, {self.fitness})"


class Estimator:
    def __init__(self, std, avg_estimate=DEFAULT_AVG_ESTIMATE):
        self.std = std
        self.avg_estimate = avg_estimate
        self.low_est = 0   # jumlah underestimate
        self.high_est = 0  # jumlah overestimate

    @classmethod
    def from_items(cls, items, avg_estimate=DEFAULT_AVG_ESTIMATE):
        # Rata-rata deviasi antara utilitas maksimum dan rata-rata, dibulatkan ke arah nol
        if not items:
            return cls(0, avg_estimate)
        total = sum(item.max_util - item.avg_util for item in items)
        std = int(total // len(items)) if total >= 0 else -int(-total // len(items))
        return cls(std, avg_estimate)

    def item_estimate(self, item):
        return item.avg_util if self.avg_estimate else item.max_util

    def buffer(self, support):
        return self.std * support if self.avg_estimate else 0

    def record(self, estimate, fitness):
        if estimate < fitness:
            self.low_est += 1
        else:
            self.high_est += 1

    def tighten(self):
        if self.high_est > 0 and self.std > 1 and self.low_est / self.high_est < 0.01:
            self.std //= 2
            log.info("std diperketat menjadi %s", self.std)
            return True
        return False


class Solutions:
    """Top-k HUI, urut fitness menurun.

    Fitness yang sama diurutkan berdasarkan bit pattern yang lebih kecil, sehingga dua
    itemset dengan fitness sama tetap tersimpan keduanya.
    """

    def __init__(self, capacity):
        self.capacity = capacity
        self.sol = []
        self._keys = []
        self.util_sum = 0
        self.min_solution_fitness = 0

    def __len__(self):
        return len(self.sol)

    def __iter__(self):
        return iter(self.sol)

    def is_new_best(self, p):
        return bool(self.sol) and p.fitness > self.sol[0].fitness

    def add(self, p):
        # True jika partikel benar-benar masuk ke top-k
        key = (-p.fitness, p.x)
        pos = bisect.bisect_left(self._keys, key)
        if pos < len(self._keys) and self._keys[pos] == key:
            return False
        if len(self.sol) == self.capacity:
            if pos == len(self._keys):
                return False
            self._keys.pop()
            self.util_sum -= self.sol.pop().fitness
        self._keys.insert(pos, key)
        self.sol.insert(pos, p)
        self.util_sum += p.fitness
        if len(self.sol) == self.capacity:
            self.min_solution_fitness = self.sol[-1].fitness
        return True


class TKUPSO:
    def __init__(self, db, pop_size=DEFAULT_POP_SIZE, iterations=DEFAULT_ITERATIONS, k=DEFAULT_K,
                 avg_estimate=DEFAULT_AVG_ESTIMATE, rng=None):
        self.db = db
        self.items = db.items
        self.transactions = db.database
        self.pop_size = pop_size
        self.iterations = iterations
        self.k = k
        self.rng = rng if rng is not None else np.random.default_rng()

        self.estimator = Estimator.from_items(self.items, avg_estimate)
        self.solutions = Solutions(k)
        self.population = []
        self.p_best = []
        self.g_best = None
        self.explored = {0}  # itemset kosong tidak pernah dievaluasi
        self.new_solution = False  # ada top-k HUI baru sejak distribusi roulette terakhir
        self.run_rws = True        # RWS gBest dijalankan pada iterasi ini
        self.prob_range = None

    @property
    def min_solution_fitness(self):
        return self.solutions.min_solution_fitness

    def run(self):
        if not self.items:
            log.info("Tidak ada item yang memenuhi batas minimum utilitas.")
            return self.solutions
        self.initialize()
        for i in range(self.iterations):
            self.step(i)
        return self.solutions

    def initialize(self):
        size_one_itemsets = deque(self.items)
        self.generate_pop(size_one_itemsets)
        self.fill_solutions(size_one_itemsets)
        self.prob_range = self.roulette_top_k()
        self.new_solution = False

    def step(self, i):
        self.run_rws = True
        self.update()
        if i > 1 and self.run_rws and self.solutions.sol:
            if self.new_solution:
                self.prob_range = self.roulette_top_k()
                self.new_solution = False
            self.select_g_best(roulette_select(self.prob_range, self.rng))
        if i > 0 and i % TIGHTEN_INTERVAL == 0:
            self.estimator.tighten()

    def add_solution(self, p):
        new_best = self.solutions.is_new_best(p)
        if not self.solutions.add(p):
            return
        if new_best:
            self.run_rws = False  # sudah ada solusi terbaik baru, RWS gBest dilewati
        self.new_solution = True

    def generate_pop(self, size_one_itemsets):
        # Partikel awal: 1-itemset dari utilitas terbesar, sisanya dengan RWS berdasarkan TWU
        twu_range = roulette_probabilities([item.twu for item in self.items]) \
            if len(self.items) < self.pop_size else None
        for i in range(self.pop_size):
            p = Particle()
            if size_one_itemsets:
                p.x = 1 << size_one_itemsets.popleft().name
            else:
                p.x = self.random_itemset(twu_range)
            tid_set = self.pev_check(p)
            p.fitness = self.calc_fitness(p, tid_set)
            self.population.append(p)
            self.p_best.append(p.copy())
            if p.x not in self.explored and p.fitness > self.min_solution_fitness:
                self.add_solution(p.copy())
            if i == 0 or p.fitness > self.g_best.fitness:
                self.g_best = p.copy()
            self.explored.add(p.x)

    def random_itemset(self, twu_range):
        positive = sum(1 for item in self.items if item.twu > 0) or len(self.items)
        target = min(int(self.rng.integers(1, self.db.max_transaction_length + 1)), positive)
        x = 0
        count = 0
        while count < target:
            item = self.items[roulette_select(twu_range, self.rng)]
            if not x >> item.name & 1:
                x |= 1 << item.name
                count += 1
        return x

    def fill_solutions(self, size_one_itemsets):
        # Sisa 1-itemset langsung masuk solusi untuk menaikkan min_solution_fitness
        while len(self.solutions) < self.k and size_one_itemsets:
            item = size_one_itemsets.popleft()
            p = Particle(1 << item.name, item.total_util)
            self.add_solution(p)
            self.explored.add(p.x)

    def pev_check(self, p):
        """Pastikan itemset partikel benar-benar muncul bersama di database.

        Item yang tidak punya transaksi bersama dengan item sebelumnya dihapus dari
        partikel. Sekaligus menghitung est_fitness. Mengembalikan TidSet partikel.
        """
        first = lowest_bit(p.x)
        item = self.items[first - 1]
        p.est_fitness = self.estimator.item_estimate(item)
        if p.x.bit_count() == 1:
            return item.tids
        tid_set = item.tids
        for name in iter_bits(p.x & ~((1 << (first + 1)) - 1)):
            other = self.items[name - 1]
            if tid_set & other.tids:
                tid_set &= other.tids
                p.est_fitness += self.estimator.item_estimate(other)
            else:
                p.x &= ~(1 << name)
        return tid_set

    def calc_fitness(self, p, tid_set, idx=None):
        # 1-itemset: utilitas sudah dihitung saat preprocessing
        if p.x.bit_count() == 1:
            return self.items[lowest_bit(p.x) - 1].total_util

        support = tid_set.bit_count()
        est = p.est_fitness * support
        buffer = self.estimator.buffer(support)
        if idx is not None:
            if est + buffer < self.min_solution_fitness and est < self.p_best[idx].fitness:
                return 0

        names = list(iter_bits(p.x))
        fitness = 0
        for tid in bit_positions(tid_set):
            transaction = self.transactions[tid]
            q = 0
            for name in names:
                while transaction[q][0] != name:
                    q += 1
                fitness += transaction[q][1]
                q += 1

        self.estimator.record(est + buffer, fitness)
        return fitness

    def update(self):
        for i in range(self.pop_size):
            self.update_particle(i)

    def update_particle(self, i):
        p = self.population[i]
        self.change_particle(self.bit_diff(self.p_best[i], p), p)
        self.change_particle(self.bit_diff(self.g_best, p), p)

        if p.x in self.explored:
            # Sudah pernah dieksplorasi, ubah satu item acak
            self.change_item(self.items[int(self.rng.integers(len(self.items)))], p)
        if p.x in self.explored:
            return

        before = p.x
        tid_set = self.pev_check(p)
        # pev-check bisa mengubah partikel menjadi itemset yang sudah dieksplorasi
        if p.x not in self.explored:
            p.fitness = self.calc_fitness(p, tid_set, i)
            if p.fitness > self.p_best[i].fitness:
                best = p.copy()
                self.p_best[i] = best
                if p.fitness > self.g_best.fitness:
                    self.g_best = best.copy()
            if p.fitness > self.min_solution_fitness:
                self.add_solution(p.copy())
            self.explored.add(p.x)
        self.explored.add(before)

    def change_item(self, item, p):
        if item.twu < self.min_solution_fitness:
            p.x &= ~(1 << item.name)  # item tidak menjanjikan, selalu dihapus
        else:
            p.x ^= 1 << item.name

    def change_particle(self, diff, p):
        if not diff:
            return
        num = int(self.rng.integers(1, len(diff) + 1))
        for _ in range(num):
            name = diff.pop(int(self.rng.integers(len(diff))))
            self.change_item(self.items[name - 1], p)

    def bit_diff(self, best, p):
        return list(iter_bits(best.x ^ p.x))

    def roulette_top_k(self):
        if not self.solutions.sol:
            return None
        return roulette_probabilities([hui.fitness for hui in self.solutions])

    def select_g_best(self, pos):
        self.g_best = self.solutions.sol[pos].copy()

    def hasil(self):
        return [([self.db.nama_asli[name] for name in iter_bits(p.x)], p.fitness) for p in self.solutions]


def jalankan_algoritma_tku_pso(data_transaksi, k=DEFAULT_K, pop_size=DEFAULT_POP_SIZE, iterations=DEFAULT_ITERATIONS,
                               avg_estimate=DEFAULT_AVG_ESTIMATE, rng=None, kolom_id_transaksi='ID_PENJUALAN',
                               kolom_id_item='KODE_BARANG', kolom_utilitas='UTILITY'):
    db = UtilityDatabase(
        k,
        kolom_id_transaksi=kolom_id_transaksi,
        kolom_id_item=kolom_id_item,
        kolom_utilitas=kolom_utilitas
    )
    db.muat_data(data_transaksi).siapkan()
    tku = TKUPSO(db, pop_size=pop_size, iterations=iterations, k=k, avg_estimate=avg_estimate, rng=rng)
    tku.run()
    return tku.hasil()
